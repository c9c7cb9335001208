import os

from dotenv import load_dotenv

load_dotenv()

# Gemini
GEMINI_API_KEY = os.environ.get("GOOGLE_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash-lite")

# Firebase
SERVICE_ACCOUNT_KEY = os.environ.get("SERVICE_ACCOUNT_KEY", "medo_backend/serviceAccountKey.json")
FIREBASE_CREDENTIALS = os.environ.get("FIREBASE_CREDENTIALS")
FIREBASE_STORAGE_BUCKET = os.environ.get("FIREBASE_STORAGE_BUCKET")

USERS_COLLECTION = "users"
FILES_SUBCOLLECTION = "uploadedFiles"
UPLOAD_PREFIX = "user-uploads"

# Attachments sent to the AI and files sent to the uploader share one limit.
MAX_ATTACHMENT_BYTES = int(os.environ.get("MAX_ATTACHMENT_BYTES", 4 * 1024 * 1024))

# Resumable uploads require a multiple of 256 KiB.
UPLOAD_CHUNK_SIZE = int(os.environ.get("UPLOAD_CHUNK_SIZE", 256 * 1024))

# In-memory upload batches and quiz sessions are evicted after this long.
UPLOAD_BATCH_TTL_SECONDS = int(os.environ.get("UPLOAD_BATCH_TTL_SECONDS", 2 * 60 * 60))
QUIZ_SESSION_TTL_SECONDS = int(os.environ.get("QUIZ_SESSION_TTL_SECONDS", 2 * 60 * 60))

FILES_STREAM_KEEPALIVE_SECONDS = 15
FILES_STREAM_LIFETIME_SECONDS = int(os.environ.get("FILES_STREAM_LIFETIME_SECONDS", 5 * 60))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Helvetica has no Arabic glyphs; point this at a TTF that does.
PDF_FONT_PATH = os.environ.get("PDF_FONT_PATH")
