from fastapi import FastAPI, HTTPException, BackgroundTasks, Request, Depends, Form, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
import uvicorn
import firebase_admin
from firebase_admin import auth, credentials, firestore, storage
from firebase_admin.exceptions import FirebaseError
import google.generativeai as genai
from google.api_core.exceptions import ResourceExhausted
from typing import List, Optional
from urllib.parse import quote
import asyncio
import json
import logging
import mimetypes
import os
import uuid

from . import flows
from .accounts import sign_in_anonymously
from .config import (
    FIREBASE_CREDENTIALS,
    FIREBASE_STORAGE_BUCKET,
    FILES_STREAM_KEEPALIVE_SECONDS,
    FILES_STREAM_LIFETIME_SECONDS,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    LOG_LEVEL,
    SERVICE_ACCOUNT_KEY,
    UPLOAD_PREFIX,
)
from .datauri import to_data_uri
from .errors import (
    IMAGES_ONLY,
    FileValidationError,
    ImageDecodeError,
    QuizStateError,
    StorageDeleteError,
    validate_attachment,
)
from .messages import t
from .models import *
from .pdf import export_transcript, images_to_pdf
from .quiz import QuizSession, QuizSessionStore
from .storage import METADATA_ONLY, StorageAdapter
from .uploads import PendingFile, UploadBatch, UploadBatchRegistry, run_upload_batch

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

key_status = bool(GEMINI_API_KEY)
logger.info(f"DEBUG: GOOGLE_API_KEY present in env: {key_status}")

app = FastAPI(title="Medo.Ai Backend")

# 1. Environment & Setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Backend handles; filled in at startup, swapped for fakes in tests.
app.state.db = None
app.state.bucket = None
app.state.model = None
app.state.quiz_sessions = QuizSessionStore()
app.state.upload_batches = UploadBatchRegistry()


@app.on_event("startup")
async def startup_event():
    # Init Firebase
    try:
        if not firebase_admin._apps:
            options = {"storageBucket": FIREBASE_STORAGE_BUCKET} if FIREBASE_STORAGE_BUCKET else None
            if FIREBASE_CREDENTIALS:
                cred = credentials.Certificate(json.loads(FIREBASE_CREDENTIALS))
                firebase_admin.initialize_app(cred, options)
                logger.info("Firebase Initialized with Environment Variable Credentials")
            elif os.path.exists(SERVICE_ACCOUNT_KEY):
                cred = credentials.Certificate(SERVICE_ACCOUNT_KEY)
                firebase_admin.initialize_app(cred, options)
                logger.info("Firebase Initialized with File Credentials")
            else:
                logger.warning("serviceAccountKey.json not found and FIREBASE_CREDENTIALS not set. Using default creds (Application Default Credentials).")
                firebase_admin.initialize_app(options=options)
        app.state.db = firestore.client()
        logger.info("Firebase Initialized")
    except Exception as e:
        logger.error(f"Firebase Init Failed: {e}")

    try:
        app.state.bucket = storage.bucket()
        logger.info(f"Storage bucket: {app.state.bucket.name}")
    except Exception as e:
        logger.error(f"Storage Init Failed (set FIREBASE_STORAGE_BUCKET): {e}")

    # Init Gemini
    if GEMINI_API_KEY:
        try:
            genai.configure(api_key=GEMINI_API_KEY)
            app.state.model = genai.GenerativeModel(GEMINI_MODEL)
            logger.info(f"Gemini Initialized Successfully ({GEMINI_MODEL})")
        except Exception as e:
            logger.error(f"Gemini Init Failed: {e}")
    else:
        logger.warning("GOOGLE_API_KEY not set.")


# 2. Dependencies

def get_db(request: Request):
    if request.app.state.db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return request.app.state.db


def get_bucket(request: Request):
    if request.app.state.bucket is None:
        raise HTTPException(status_code=503, detail="Storage unavailable")
    return request.app.state.bucket


def get_storage(db=Depends(get_db), bucket=Depends(get_bucket)) -> StorageAdapter:
    return StorageAdapter(db, bucket)


def get_model(request: Request):
    if request.app.state.model is None:
        raise HTTPException(status_code=503, detail="AI Model unavailable")
    return request.app.state.model


def get_auth_client():
    return auth


def get_current_uid(request: Request, auth_client=Depends(get_auth_client)) -> str:
    """uid of the caller, from `Authorization: Bearer <Firebase ID token>`."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing ID token")
    try:
        decoded = auth_client.verify_id_token(token.strip())
    except (ValueError, FirebaseError) as e:
        logger.info(f"Rejected ID token: {e}")
        raise HTTPException(status_code=401, detail="Invalid ID token")
    return decoded["uid"]


def ensure_owner(uid: str, current_uid: str):
    if uid != current_uid:
        logger.warning(f"{current_uid} tried to access files of {uid}")
        raise HTTPException(status_code=403, detail="Not allowed to access another user's files")


def get_owner_uid(uid: str, current_uid: str = Depends(get_current_uid)) -> str:
    ensure_owner(uid, current_uid)
    return uid


def get_quiz_sessions(request: Request) -> QuizSessionStore:
    return request.app.state.quiz_sessions


def get_upload_batches(request: Request) -> UploadBatchRegistry:
    return request.app.state.upload_batches


# 3. Error handling

@app.exception_handler(FileValidationError)
async def file_validation_handler(request: Request, exc: FileValidationError):
    logger.info(f"Rejected {exc.file_name}: {exc.kind}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind, "fileName": exc.file_name},
    )


@app.exception_handler(QuizStateError)
async def quiz_state_handler(request: Request, exc: QuizStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def ai_failure(e: Exception, language: str) -> HTTPException:
    error_msg = str(e)
    logger.error(f"AI Error: {error_msg}")
    if isinstance(e, ResourceExhausted) or "429" in error_msg or "Quota" in error_msg:
        return HTTPException(status_code=429, detail=t("ai_quota", language))
    return HTTPException(status_code=502, detail=t("ai_unavailable", language))


def attachment_data_uri(upload: Optional[UploadFile], language: str) -> Optional[str]:
    """Validate an image/PDF attachment and inline it as a data URI."""
    if upload is None or not upload.filename:
        return None
    data = upload.file.read()
    validate_attachment(upload.filename, upload.content_type, len(data), language)
    return to_data_uri(data, upload.content_type)


def attachment_headers(file_name: str) -> dict:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"}


# 4. API Endpoints

@app.get("/")
def home(request: Request):
    return {
        "status": "Medo.Ai Backend Running",
        "firebase_ready": request.app.state.db is not None,
        "storage_ready": request.app.state.bucket is not None,
        "model_ready": request.app.state.model is not None,
    }


@app.post("/auth/anonymous", response_model=AnonymousSession)
def auth_anonymous(db=Depends(get_db), auth_client=Depends(get_auth_client)):
    try:
        return sign_in_anonymously(db, auth_client)
    except Exception as e:
        logger.error(f"Anonymous sign-in error: {e}")
        raise HTTPException(status_code=502, detail="Anonymous sign-in failed")


# -- AI chat --

@app.post("/chat", response_model=ChatExchange)
def chat(
    task: ChatTask = Form("explain"),
    language: Language = Form("ar"),
    message: str = Form(""),
    difficulty: Optional[Difficulty] = Form(None),
    file: Optional[UploadFile] = File(None),
    model=Depends(get_model),
):
    file_data_uri = attachment_data_uri(file, language)
    if not message.strip() and not file_data_uri:
        raise HTTPException(status_code=400, detail=t("message_required", language))

    user_text = message
    if file is not None and file.filename:
        user_text = f"{message} | {file.filename}" if message else file.filename
    user_message = ChatMessage(id=uuid.uuid4().hex, text=user_text, sender="user")

    try:
        result = flows.chat(model, ChatInput(
            task=task,
            difficulty=difficulty,
            language=language,
            message=message,
            fileDataUri=file_data_uri,
        ))
    except Exception as e:
        raise ai_failure(e, language)

    bot_message = ChatMessage(id=uuid.uuid4().hex, text=result.response, sender="bot")
    return ChatExchange(messages=[user_message, bot_message])


# -- Question generator --

@app.post("/questions/generate", response_model=GenerateQuestionsOutput)
def questions_generate(
    context: str = Form(""),
    questionCount: int = Form(5, ge=1, le=20),
    difficulty: Difficulty = Form("medium"),
    language: Language = Form("ar"),
    mode: QuestionMode = Form("static"),
    file: Optional[UploadFile] = File(None),
    model=Depends(get_model),
):
    file_data_uri = attachment_data_uri(file, language)
    if not context.strip() and not file_data_uri:
        raise HTTPException(status_code=400, detail=t("content_required", language))

    try:
        return flows.generate_questions(model, GenerateQuestionsInput(
            context=context,
            fileDataUri=file_data_uri,
            questionCount=questionCount,
            difficulty=difficulty,
            language=language,
            mode=mode,
        ))
    except Exception as e:
        raise ai_failure(e, language)


# -- Interactive quiz --

def _session_or_404(store: QuizSessionStore, session_id: str) -> QuizSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Quiz session not found")
    return session


@app.post("/quiz/sessions", response_model=QuizSessionView)
def quiz_create(
    context: str = Form(""),
    questionCount: int = Form(5, ge=1, le=20),
    difficulty: Difficulty = Form("medium"),
    language: Language = Form("ar"),
    file: Optional[UploadFile] = File(None),
    model=Depends(get_model),
    store: QuizSessionStore = Depends(get_quiz_sessions),
):
    file_data_uri = attachment_data_uri(file, language)
    if not context.strip() and not file_data_uri:
        raise HTTPException(status_code=400, detail=t("content_required", language))

    session = store.add(QuizSession(questionCount, difficulty, language, context))
    try:
        session.generate(model, file_data_uri)
    except Exception as e:
        raise ai_failure(e, language)
    return session.view()


@app.get("/quiz/sessions/{session_id}", response_model=QuizSessionView)
def quiz_get(session_id: str, store: QuizSessionStore = Depends(get_quiz_sessions)):
    return _session_or_404(store, session_id).view()


@app.put("/quiz/sessions/{session_id}/answers/{question_index}", response_model=QuizSessionView)
def quiz_answer(session_id: str, question_index: int, request: QuizAnswerRequest,
                store: QuizSessionStore = Depends(get_quiz_sessions)):
    session = _session_or_404(store, session_id)
    try:
        session.answer(question_index, request.optionIndex)
    except IndexError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return session.view()


@app.post("/quiz/sessions/{session_id}/score", response_model=QuizScore)
def quiz_score(session_id: str, store: QuizSessionStore = Depends(get_quiz_sessions)):
    return _session_or_404(store, session_id).score()


@app.post("/quiz/sessions/{session_id}/restart", response_model=QuizSessionView)
def quiz_restart(session_id: str, store: QuizSessionStore = Depends(get_quiz_sessions)):
    session = _session_or_404(store, session_id)
    session.restart()
    return session.view()


# -- Voice --

@app.post("/voice/transcribe", response_model=TranscribeOutput)
def voice_transcribe(audio: UploadFile = File(...), language: Language = Form("ar"), model=Depends(get_model)):
    content_type = audio.content_type or "audio/webm"
    if not content_type.startswith("audio/"):
        raise FileValidationError("invalid_type", "Expected an audio recording", audio.filename)
    data = audio.file.read()
    try:
        return flows.transcribe(model, TranscribeInput(audioDataUri=to_data_uri(data, content_type)))
    except Exception as e:
        raise ai_failure(e, language)


@app.post("/voice/summarize", response_model=SummarizeTranscribedOutput)
def voice_summarize(request: SummarizeRequest, model=Depends(get_model)):
    try:
        return flows.summarize_transcribed_text(model, request)
    except Exception as e:
        raise ai_failure(e, request.language)


@app.post("/voice/recordings", response_model=UploadedFileRecord)
def voice_save_recording(
    uid: str = Form(...),
    fileName: str = Form(""),
    language: Language = Form("ar"),
    audio: Optional[UploadFile] = File(None),
    current_uid: str = Depends(get_current_uid),
    storage_adapter: StorageAdapter = Depends(get_storage),
):
    ensure_owner(uid, current_uid)
    if audio is None or not fileName.strip():
        raise HTTPException(status_code=400, detail=t("recording_missing_info", language))

    content_type = (audio.content_type or "audio/webm").split(";")[0]
    extension = ".webm" if content_type == "audio/webm" else (mimetypes.guess_extension(content_type) or ".webm")
    name = f"{fileName.strip()}{extension}"
    path = f"{UPLOAD_PREFIX}/{uid}/audio/{name}"
    data = audio.file.read()

    record_id = storage_adapter.new_record_id(uid)
    try:
        url = storage_adapter.upload(path, data, content_type, metadata={"recordId": record_id})
    except Exception as e:
        logger.error(f"Recording upload failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    record = storage_adapter.build_record(uid, record_id, name, content_type, len(data), url, path)
    if not storage_adapter.record_metadata(record):
        raise HTTPException(status_code=502, detail=t("metadata_write_failed", language))
    return record


@app.post("/voice/export")
def voice_export(request: TranscriptExportRequest):
    payload, media_type, file_name = export_transcript(
        request.transcribedText, request.summarizedText, request.format
    )
    return Response(content=payload, media_type=media_type, headers=attachment_headers(file_name))


# -- Image to PDF --

@app.post("/pdf/convert")
def pdf_convert(
    fileName: str = Form(""),
    language: Language = Form("ar"),
    images: Optional[List[UploadFile]] = File(None),
):
    if not images or not fileName.strip():
        raise HTTPException(status_code=400, detail=t("pdf_missing_info", language))

    selected = []
    for image in images:
        data = image.file.read()
        validate_attachment(image.filename, image.content_type, len(data), language,
                            accept=IMAGES_ONLY, max_bytes=None)
        selected.append((image.filename, data))

    final_name = f"{fileName.strip()}.pdf"
    try:
        pdf_bytes = images_to_pdf(selected, title=fileName.strip())
    except ImageDecodeError as e:
        logger.error(f"Conversion Error: {e}")
        raise HTTPException(status_code=422, detail=f"{t('pdf_failed', language)} {e}")
    logger.info(f"Built {final_name} from {len(selected)} images")
    return Response(content=pdf_bytes, media_type="application/pdf", headers=attachment_headers(final_name))


# -- Files --

@app.get("/users/{uid}/files", response_model=List[UploadedFileRecord])
def files_list(uid: str = Depends(get_owner_uid), storage_adapter: StorageAdapter = Depends(get_storage)):
    return storage_adapter.list_files(uid)


@app.get("/users/{uid}/files/stream")
async def files_stream(request: Request, uid: str = Depends(get_owner_uid), storage_adapter: StorageAdapter = Depends(get_storage)):
    """Server-Sent Events: the full ordered listing each time it changes."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(records):
        # Firestore calls back on its own thread.
        loop.call_soon_threadsafe(queue.put_nowait, records)

    watch = storage_adapter.watch_files(uid, on_change)

    async def events():
        # Bounded lifetime; EventSource clients reconnect when it closes.
        deadline = loop.time() + FILES_STREAM_LIFETIME_SECONDS
        try:
            while loop.time() < deadline and not await request.is_disconnected():
                timeout = min(FILES_STREAM_KEEPALIVE_SECONDS, deadline - loop.time())
                try:
                    records = await asyncio.wait_for(queue.get(), timeout=max(timeout, 0))
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                payload = json.dumps([r.model_dump() for r in records], ensure_ascii=False)
                yield f"data: {payload}\n\n"
        finally:
            watch.unsubscribe()

    return StreamingResponse(events(), media_type="text/event-stream")


@app.post("/users/{uid}/files", status_code=202, response_model=UploadBatchSummary)
async def files_upload(
    background_tasks: BackgroundTasks,
    uid: str = Depends(get_owner_uid),
    files: Optional[List[UploadFile]] = File(None),
    language: Language = Form("ar"),
    storage_adapter: StorageAdapter = Depends(get_storage),
    batches: UploadBatchRegistry = Depends(get_upload_batches),
):
    if not files:
        raise HTTPException(status_code=400, detail=t("no_files_selected", language))

    pending = []
    for upload in files:
        data = await upload.read()
        validate_attachment(upload.filename, upload.content_type, len(data), language, accept=None)
        pending.append(PendingFile(upload.filename, upload.content_type or "application/octet-stream", data))

    batch = batches.add(UploadBatch(uid, pending, language))
    background_tasks.add_task(run_upload_batch, storage_adapter, batch)
    logger.info(f"Queued batch {batch.id} with {len(pending)} files for {uid}")
    return batch.summary()


@app.get("/uploads/{batch_id}", response_model=UploadBatchSummary)
def upload_status(batch_id: str, batches: UploadBatchRegistry = Depends(get_upload_batches)):
    batch = batches.get(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Upload batch not found")
    return batch.summary()


@app.delete("/users/{uid}/files/{file_id}", response_model=DeleteResult)
def files_delete(file_id: str, uid: str = Depends(get_owner_uid), lang: Language = "ar",
                 storage_adapter: StorageAdapter = Depends(get_storage)):
    record = storage_adapter.get_file(uid, file_id)
    if record is None:
        raise HTTPException(status_code=404, detail=t("file_not_found", lang))
    try:
        outcome = storage_adapter.delete(record)
    except StorageDeleteError as e:
        raise HTTPException(status_code=502, detail=f"{t('file_delete_failed', lang)} {e}")

    key = "file_metadata_only_deleted" if outcome == METADATA_ONLY else "file_deleted"
    return DeleteResult(fileId=file_id, outcome=outcome, message=t(key, lang, name=record.fileName))


if __name__ == "__main__":
    uvicorn.run("medo_backend.main:app", host="0.0.0.0", port=8000, reload=True)
