from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Dict, List, Optional, Literal, Union

Language = Literal["ar", "en"]
Difficulty = Literal["easy", "medium", "hard"]
ChatTask = Literal["explain", "solve", "generate", "summarize"]
QuestionMode = Literal["static", "interactive"]

# ============ Chat ============
class ChatInput(BaseModel):
    task: ChatTask
    difficulty: Optional[Difficulty] = None # only meaningful for "generate"
    language: Language = "ar"
    message: str = ""
    fileDataUri: Optional[str] = None

class ChatOutput(BaseModel):
    response: str

class ChatMessage(BaseModel):
    id: str
    text: str
    sender: Literal["user", "bot"]

class ChatExchange(BaseModel):
    messages: List[ChatMessage]

# ============ Questions ============
class StaticQuestion(BaseModel):
    question: str
    answer: str
    explanation: str

class InteractiveQuestion(BaseModel):
    question: str
    options: List[str] = Field(min_length=4, max_length=4)
    correctAnswerIndex: int
    explanation: str

    @model_validator(mode="after")
    def index_within_options(self):
        if not 0 <= self.correctAnswerIndex < len(self.options):
            raise ValueError("correctAnswerIndex must index within options")
        return self

class GenerateQuestionsInput(BaseModel):
    context: str = ""
    fileDataUri: Optional[str] = None
    questionCount: int = Field(default=5, ge=1, le=20)
    difficulty: Difficulty = "medium"
    language: Language = "ar"
    mode: QuestionMode = "static"

class GenerateQuestionsOutput(BaseModel):
    mode: QuestionMode = "static"
    questions: List[Union[InteractiveQuestion, StaticQuestion]] = []

# ============ Voice ============
class TranscribeInput(BaseModel):
    audioDataUri: str

class TranscribeOutput(BaseModel):
    text: str

class SummarizeTranscribedInput(BaseModel):
    text: str
    language: Language = "ar"

class SummarizeTranscribedOutput(BaseModel):
    summary: str

class SummarizeRequest(SummarizeTranscribedInput):
    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be empty")
        return value

class TranscriptExportRequest(BaseModel):
    transcribedText: str = ""
    summarizedText: str = ""
    format: Literal["txt", "pdf"] = "txt"

# ============ Files ============
class UploadedFileRecord(BaseModel):
    id: str
    fileName: str
    fileType: str
    fileSize: int
    uploadDate: str # ISO-8601, sole ordering key
    storageLocation: str
    storagePath: Optional[str] = None
    userId: str

    def to_document(self) -> dict:
        return self.model_dump(exclude={"id"})

class UploadTask(BaseModel):
    fileName: str
    fileType: str
    fileSize: int
    progress: int = Field(default=0, ge=0, le=100)
    status: Literal["pending", "uploading", "succeeded", "failed"] = "pending"
    recordId: Optional[str] = None
    error: Optional[str] = None

class UploadBatchSummary(BaseModel):
    batchId: str
    userId: str
    total: int
    succeeded: int
    failed: int
    settled: bool
    message: Optional[str] = None
    tasks: List[UploadTask]

class DeleteResult(BaseModel):
    fileId: str
    outcome: Literal["deleted", "metadata_only"]
    message: str

# ============ Quiz ============
class QuizAnswerRequest(BaseModel):
    optionIndex: int = Field(ge=0, le=3)

class QuizQuestionResult(BaseModel):
    questionIndex: int
    selectedIndex: int
    correctAnswerIndex: int
    correct: bool

class QuizScore(BaseModel):
    score: int
    total: int
    results: List[QuizQuestionResult]

class QuizSessionView(BaseModel):
    sessionId: str
    state: Literal["configuring", "generating", "answering", "scored"]
    questionCount: int
    difficulty: Difficulty
    language: Language
    questions: List[InteractiveQuestion] = []
    answers: Dict[int, int] = {}
    canScore: bool = False
    result: Optional[QuizScore] = None

# ============ Accounts ============
class AnonymousSession(BaseModel):
    uid: str
    customToken: str
