"""
Prompt flows: one Gemini call per request.

Every flow renders its instruction template in Python (task, difficulty,
language and question-mode branches are resolved here, not by the model),
sends it with an optional inline file, and validates the JSON that comes back.
An empty or unparseable completion turns into a localized fallback instead of
an exception. Transport errors from the SDK are left to the caller.
"""
import json
import logging
from typing import List, Optional, Type, TypeVar

import google.generativeai as genai
from pydantic import BaseModel, ValidationError

from .datauri import inline_part
from .messages import t
from .models import (
    ChatInput,
    ChatOutput,
    GenerateQuestionsInput,
    GenerateQuestionsOutput,
    InteractiveQuestion,
    StaticQuestion,
    SummarizeTranscribedInput,
    SummarizeTranscribedOutput,
    TranscribeInput,
    TranscribeOutput,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

LANGUAGE_NAMES = {"ar": "Arabic", "en": "English"}

TASK_INSTRUCTIONS = {
    "explain": "Provide a clear and concise explanation of the content in the message or the attached file.",
    "solve": (
        "Solve the complex question provided. If it's a code snippet, debug it, correct it, "
        "and provide an organized, well-formatted version with explanations."
    ),
    "generate": "Create {difficulty} questions from the content of the message or file.",
    "summarize": "Provide a concise summary of the content in the message or the attached file.",
}

CHAT_TEMPLATE = """You are an expert AI assistant specialized in various fields including accounting, mathematics, programming, and general sciences. Your task is to process user requests based on the provided text and optional file.

Task: {task}
{difficulty_line}
User Message:
{message}
{attachment_line}
Instructions:
- {instruction}
- Respond in {language_name}.

Return ONLY a valid JSON object:
{{"response": "..."}}
"""

QUESTIONS_TEMPLATE = """You are an expert in creating educational content. Your task is to generate a specific number of questions based on the provided context (text or file).

Context:
{context}
{attachment_line}
Instructions:
- Generate exactly {count} questions.
- The difficulty of the questions should be: {difficulty}.
{mode_instructions}
- The entire output (questions, answers, explanations) must be in {language_name}.

Return ONLY a valid JSON object:
{schema}
"""

STATIC_INSTRUCTIONS = (
    "- For each question, provide the question itself, the correct answer, "
    "and a brief explanation for the answer."
)
STATIC_SCHEMA = '{"questions": [{"question": "...", "answer": "...", "explanation": "..."}]}'

INTERACTIVE_INSTRUCTIONS = (
    "- Each question is multiple choice with exactly 4 options.\n"
    "- Exactly one option is correct; give its zero-based position as correctAnswerIndex (0 to 3).\n"
    "- Add a brief explanation of why the correct option is right."
)
INTERACTIVE_SCHEMA = (
    '{"questions": [{"question": "...", "options": ["...", "...", "...", "..."], '
    '"correctAnswerIndex": 0, "explanation": "..."}]}'
)

TRANSCRIBE_INSTRUCTION = "Transcribe this audio recording verbatim. Return only the transcribed text."

SUMMARIZE_TEMPLATES = {
    "ar": "قم بتلخيص النص التالي باللغة العربية. اجعل الملخص موجزًا وواضحًا. النص الأصلي: \n\n{text}",
    "en": "Summarize the following text in English. Keep the summary concise and clear. Original text: \n\n{text}",
}
SUMMARY_SCHEMA = '\n\nReturn ONLY a valid JSON object: {"summary": "..."}'

JSON_OUTPUT = genai.GenerationConfig(response_mime_type="application/json")


def _response_text(response) -> str:
    # .text raises ValueError when the candidate has no parts (blocked/empty).
    try:
        return (response.text or "").strip()
    except ValueError as e:
        logger.warning(f"Empty completion: {e}")
        return ""


def _clean_json(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def _generate_json(model, parts: list) -> Optional[dict]:
    response = model.generate_content(parts, generation_config=JSON_OUTPUT)
    text = _response_text(response)
    if not text:
        return None
    try:
        data = json.loads(_clean_json(text))
    except json.JSONDecodeError as e:
        logger.warning(f"Completion was not valid JSON: {e}")
        return None
    return data if isinstance(data, dict) else None


def _validated(data: Optional[dict], output_type: Type[T]) -> Optional[T]:
    if data is None:
        return None
    try:
        return output_type.model_validate(data)
    except ValidationError as e:
        logger.warning(f"{output_type.__name__} failed validation: {e.error_count()} errors")
        return None


def _parts(prompt: str, file_data_uri: Optional[str]) -> list:
    parts = [prompt]
    if file_data_uri:
        parts.append(inline_part(file_data_uri))
    return parts


def render_chat_prompt(data: ChatInput) -> str:
    instruction = TASK_INSTRUCTIONS[data.task]
    if data.task == "generate":
        instruction = instruction.format(difficulty=data.difficulty or "medium")
    return CHAT_TEMPLATE.format(
        task=data.task,
        difficulty_line=f"Difficulty: {data.difficulty}\n" if data.difficulty else "",
        message=data.message,
        attachment_line="\nAttached File: (see the attached file)\n" if data.fileDataUri else "",
        instruction=instruction,
        language_name=LANGUAGE_NAMES[data.language],
    )


def chat(model, data: ChatInput) -> ChatOutput:
    prompt = render_chat_prompt(data)
    output = _validated(_generate_json(model, _parts(prompt, data.fileDataUri)), ChatOutput)
    if output is None or not output.response.strip():
        return ChatOutput(response=t("chat_fallback", data.language))
    return output


def render_questions_prompt(data: GenerateQuestionsInput) -> str:
    interactive = data.mode == "interactive"
    return QUESTIONS_TEMPLATE.format(
        context=data.context,
        attachment_line="\nAttached File: (see the attached file)\n" if data.fileDataUri else "",
        count=data.questionCount,
        difficulty=data.difficulty,
        mode_instructions=INTERACTIVE_INSTRUCTIONS if interactive else STATIC_INSTRUCTIONS,
        language_name=LANGUAGE_NAMES[data.language],
        schema=INTERACTIVE_SCHEMA if interactive else STATIC_SCHEMA,
    )


def _valid_questions(raw: list, question_type: Type[T], limit: int) -> List[T]:
    questions = []
    for index, item in enumerate(raw):
        try:
            questions.append(question_type.model_validate(item))
        except ValidationError:
            logger.warning(f"Dropping malformed question #{index + 1}")
    return questions[:limit]


def generate_questions(model, data: GenerateQuestionsInput) -> GenerateQuestionsOutput:
    prompt = render_questions_prompt(data)
    payload = _generate_json(model, _parts(prompt, data.fileDataUri))
    raw = (payload or {}).get("questions")
    if not isinstance(raw, list):
        return GenerateQuestionsOutput(mode=data.mode, questions=[])
    question_type = InteractiveQuestion if data.mode == "interactive" else StaticQuestion
    questions = _valid_questions(raw, question_type, data.questionCount)
    logger.info(f"Generated {len(questions)}/{data.questionCount} {data.mode} questions")
    return GenerateQuestionsOutput(mode=data.mode, questions=questions)


def transcribe(model, data: TranscribeInput) -> TranscribeOutput:
    response = model.generate_content([TRANSCRIBE_INSTRUCTION, inline_part(data.audioDataUri)])
    return TranscribeOutput(text=_response_text(response))


def summarize_transcribed_text(model, data: SummarizeTranscribedInput) -> SummarizeTranscribedOutput:
    prompt = SUMMARIZE_TEMPLATES[data.language].format(text=data.text) + SUMMARY_SCHEMA
    output = _validated(_generate_json(model, [prompt]), SummarizeTranscribedOutput)
    if output is None or not output.summary.strip():
        return SummarizeTranscribedOutput(summary=t("summary_fallback", data.language))
    return output
