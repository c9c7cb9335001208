"""
Interactive quiz sessions.

    configuring -> generating -> answering -> scored -> configuring (restart)

A generation that fails or returns no questions lands back in configuring.
Scoring is only available once every returned question has an answer, and it
is computed over the questions the model actually returned.
"""
import logging
import time
import uuid
from typing import Dict, List, Optional

from . import flows
from .config import QUIZ_SESSION_TTL_SECONDS
from .errors import QuizStateError
from .models import (
    GenerateQuestionsInput,
    InteractiveQuestion,
    QuizQuestionResult,
    QuizScore,
    QuizSessionView,
)

logger = logging.getLogger(__name__)

CONFIGURING = "configuring"
GENERATING = "generating"
ANSWERING = "answering"
SCORED = "scored"


def compute_score(questions: List[InteractiveQuestion], answers: Dict[int, int]) -> QuizScore:
    results = []
    for index, question in enumerate(questions):
        selected = answers.get(index, -1)
        results.append(QuizQuestionResult(
            questionIndex=index,
            selectedIndex=selected,
            correctAnswerIndex=question.correctAnswerIndex,
            correct=selected == question.correctAnswerIndex,
        ))
    return QuizScore(
        score=sum(1 for result in results if result.correct),
        total=len(questions),
        results=results,
    )


class QuizSession:
    def __init__(self, question_count: int = 5, difficulty: str = "medium",
                 language: str = "ar", context: str = ""):
        self.id = uuid.uuid4().hex
        self.state = CONFIGURING
        self.question_count = question_count
        self.difficulty = difficulty
        self.language = language
        self.context = context
        self.questions: List[InteractiveQuestion] = []
        self.answers: Dict[int, int] = {}
        self.result: Optional[QuizScore] = None
        self.touched_at = time.time()

    def _require(self, *states):
        if self.state not in states:
            raise QuizStateError(f"Not allowed while the quiz is {self.state}")

    def configure(self, question_count=None, difficulty=None, language=None, context=None):
        self._require(CONFIGURING)
        if question_count is not None:
            self.question_count = question_count
        if difficulty is not None:
            self.difficulty = difficulty
        if language is not None:
            self.language = language
        if context is not None:
            self.context = context

    def generate(self, model, file_data_uri: Optional[str] = None) -> List[InteractiveQuestion]:
        self._require(CONFIGURING)
        self.state = GENERATING
        request = GenerateQuestionsInput(
            context=self.context,
            fileDataUri=file_data_uri,
            questionCount=self.question_count,
            difficulty=self.difficulty,
            language=self.language,
            mode="interactive",
        )
        try:
            output = flows.generate_questions(model, request)
        except Exception:
            self.state = CONFIGURING
            raise
        self.questions = list(output.questions)
        self.answers = {}
        self.result = None
        self.state = ANSWERING if self.questions else CONFIGURING
        logger.info(f"Quiz {self.id}: {len(self.questions)} questions ready")
        return self.questions

    def answer(self, question_index: int, option_index: int):
        self._require(ANSWERING)
        if not 0 <= question_index < len(self.questions):
            raise IndexError(f"No question at index {question_index}")
        if not 0 <= option_index < len(self.questions[question_index].options):
            raise IndexError(f"No option at index {option_index}")
        self.answers[question_index] = option_index

    @property
    def can_score(self) -> bool:
        return (
            self.state == ANSWERING
            and bool(self.questions)
            and len(self.answers) == len(self.questions)
        )

    def score(self) -> QuizScore:
        if self.state == SCORED:
            return self.result
        if not self.can_score:
            raise QuizStateError("Answer every question before showing results")
        self.result = compute_score(self.questions, self.answers)
        self.state = SCORED
        return self.result

    def restart(self):
        self.questions = []
        self.answers = {}
        self.result = None
        self.state = CONFIGURING

    def view(self) -> QuizSessionView:
        return QuizSessionView(
            sessionId=self.id,
            state=self.state,
            questionCount=self.question_count,
            difficulty=self.difficulty,
            language=self.language,
            questions=self.questions,
            answers=self.answers,
            canScore=self.can_score,
            result=self.result,
        )


class QuizSessionStore:
    """Sessions untouched for longer than `ttl_seconds` are evicted."""

    def __init__(self, ttl_seconds: int = QUIZ_SESSION_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, QuizSession] = {}

    def __len__(self):
        return len(self._sessions)

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        expired = [
            session_id for session_id, session in list(self._sessions.items())
            if now - session.touched_at > self.ttl_seconds
        ]
        for session_id in expired:
            self._sessions.pop(session_id, None)
        if expired:
            logger.info(f"Evicted {len(expired)} idle quiz sessions")
        return len(expired)

    def add(self, session: QuizSession) -> QuizSession:
        self.cleanup_expired()
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[QuizSession]:
        self.cleanup_expired()
        session = self._sessions.get(session_id)
        if session is not None:
            session.touched_at = time.time()
        return session
