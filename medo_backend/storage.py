"""
Firebase Storage + Firestore adapter for a user's files.

Blobs live under `user-uploads/{uid}/...`; one metadata document per blob
lives at `users/{uid}/uploadedFiles/{id}`. The document id is generated
before the upload starts and is stamped into the blob's custom metadata.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional
from urllib.parse import quote, unquote, urlparse

from firebase_admin import firestore
from google.api_core.exceptions import GoogleAPICallError, GoogleAPIError, NotFound

from .config import FILES_SUBCOLLECTION, UPLOAD_CHUNK_SIZE, USERS_COLLECTION
from .errors import FirestorePermissionError, StorageDeleteError
from .models import UploadedFileRecord

logger = logging.getLogger(__name__)

DELETED = "deleted"
METADATA_ONLY = "metadata_only"

DOWNLOAD_URL = "https://firebasestorage.googleapis.com/v0/b/{bucket}/o/{path}?alt=media&token={token}"


def progress_percent(transferred: int, total: int) -> int:
    if total <= 0:
        return 100
    return round(transferred / total * 100)


def utc_now_iso() -> str:
    # Same shape as JavaScript's Date.toISOString(), so string order == time order.
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def storage_path_from_url(location: str) -> str:
    """Recover the object path from a Firebase download URL, a gs:// URL or a bare path."""
    parsed = urlparse(location)
    if parsed.scheme in ("http", "https"):
        marker = "/o/"
        if marker not in parsed.path:
            raise ValueError(f"Not a Firebase Storage URL: {location}")
        return unquote(parsed.path.split(marker, 1)[1])
    if parsed.scheme == "gs":
        return parsed.path.lstrip("/")
    return location


class StorageAdapter:
    def __init__(self, db, bucket, chunk_size: int = UPLOAD_CHUNK_SIZE):
        self.db = db
        self.bucket = bucket
        self.chunk_size = chunk_size

    def files_collection(self, uid: str):
        return self.db.collection(USERS_COLLECTION).document(uid).collection(FILES_SUBCOLLECTION)

    def new_record_id(self, uid: str) -> str:
        return self.files_collection(uid).document().id

    def download_url(self, path: str, token: str) -> str:
        return DOWNLOAD_URL.format(bucket=self.bucket.name, path=quote(path, safe=""), token=token)

    def upload(self, path: str, data: bytes, content_type: str,
               on_progress: Optional[Callable[[int], None]] = None,
               metadata: Optional[dict] = None) -> str:
        """
        Resumable, chunked upload. `on_progress` receives 0..100 after each
        chunk handed to the writer and 100 once the upload is finalized.
        Returns a durable download URL.
        """
        token = uuid.uuid4().hex
        blob = self.bucket.blob(path)
        blob.metadata = {**(metadata or {}), "firebaseStorageDownloadTokens": token}

        total = len(data)
        written = 0
        if on_progress:
            on_progress(0)
        with blob.open("wb", chunk_size=self.chunk_size, ignore_flush=True, content_type=content_type) as writer:
            for start in range(0, total, self.chunk_size):
                chunk = data[start:start + self.chunk_size]
                writer.write(chunk)
                written += len(chunk)
                # The last chunk is only sent when the writer closes.
                if on_progress and written < total:
                    on_progress(progress_percent(written, total))
        if on_progress:
            on_progress(100)
        logger.info(f"Uploaded {path} ({total} bytes)")
        return self.download_url(path, token)

    def build_record(self, uid: str, record_id: str, file_name: str, file_type: str,
                     file_size: int, url: str, path: str) -> UploadedFileRecord:
        return UploadedFileRecord(
            id=record_id,
            fileName=file_name,
            fileType=file_type,
            fileSize=file_size,
            uploadDate=utc_now_iso(),
            storageLocation=url,
            storagePath=path,
            userId=uid,
        )

    def record_metadata(self, record: UploadedFileRecord,
                        on_error: Optional[Callable[[FirestorePermissionError], None]] = None) -> bool:
        """Write the metadata document. Failures go to `on_error`, never up the stack."""
        path = f"{USERS_COLLECTION}/{record.userId}/{FILES_SUBCOLLECTION}/{record.id}"
        data = record.to_document()
        try:
            self.files_collection(record.userId).document(record.id).set(data)
            return True
        except GoogleAPIError as e:
            diagnostic = FirestorePermissionError(
                path=path,
                operation="create",
                request_resource_data=data,
                reason=str(e),
            )
            logger.error(f"Metadata write rejected: {diagnostic.to_dict()}")
            if on_error:
                on_error(diagnostic)
            return False

    def _record(self, snapshot) -> UploadedFileRecord:
        return UploadedFileRecord(id=snapshot.id, **snapshot.to_dict())

    def _ordered(self, uid: str):
        return self.files_collection(uid).order_by("uploadDate", direction=firestore.Query.DESCENDING)

    def list_files(self, uid: str) -> List[UploadedFileRecord]:
        return [self._record(snapshot) for snapshot in self._ordered(uid).stream()]

    def watch_files(self, uid: str, callback: Callable[[List[UploadedFileRecord]], None]):
        """
        Live listing. `callback` gets the full ordered list every time the
        collection changes. Call `.unsubscribe()` on the returned watch to stop.
        """
        def on_snapshot(documents, changes, read_time):
            callback([self._record(snapshot) for snapshot in documents])

        return self._ordered(uid).on_snapshot(on_snapshot)

    def get_file(self, uid: str, file_id: str) -> Optional[UploadedFileRecord]:
        snapshot = self.files_collection(uid).document(file_id).get()
        if not snapshot.exists:
            return None
        return self._record(snapshot)

    def delete(self, record: UploadedFileRecord) -> str:
        """
        Delete the blob, then the metadata. A blob that is already gone still
        lets the metadata go (METADATA_ONLY); any other blob error stops
        before the metadata is touched.
        """
        path = record.storagePath or storage_path_from_url(record.storageLocation)
        doc_ref = self.files_collection(record.userId).document(record.id)
        try:
            self.bucket.blob(path).delete()
        except NotFound:
            logger.warning(f"Blob {path} already missing; removing metadata for {record.id}")
            doc_ref.delete()
            return METADATA_ONLY
        except GoogleAPICallError as e:
            logger.error(f"Failed to delete blob {path}: {e}")
            raise StorageDeleteError(str(e)) from e
        doc_ref.delete()
        return DELETED
