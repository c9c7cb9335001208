"""
Multi-file upload pipeline.

Each file in a batch gets its own task: pre-generated record id, resumable
upload that only touches that task's progress slot, then one metadata
document. Tasks run concurrently and the batch waits for all of them to
settle; one failure never cancels or rolls back the others.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import UPLOAD_BATCH_TTL_SECONDS, UPLOAD_PREFIX
from .errors import FirestorePermissionError
from .messages import t
from .models import UploadBatchSummary, UploadedFileRecord, UploadTask
from .storage import StorageAdapter

logger = logging.getLogger(__name__)


@dataclass
class PendingFile:
    name: str
    content_type: str
    data: bytes


class MetadataWriteError(Exception):
    pass


class UploadBatch:
    def __init__(self, uid: str, files: List[PendingFile], language: str = "ar"):
        self.id = uuid.uuid4().hex
        self.uid = uid
        self.language = language
        self.tasks = [
            UploadTask(fileName=f.name, fileType=f.content_type, fileSize=len(f.data))
            for f in files
        ]
        self.payloads = [f.data for f in files]
        self.settled = False
        self.finished_at: Optional[float] = None
        self.diagnostics: List[FirestorePermissionError] = []

    @property
    def succeeded(self) -> int:
        return sum(1 for task in self.tasks if task.status == "succeeded")

    def summary(self) -> UploadBatchSummary:
        total = len(self.tasks)
        message = None
        if self.settled:
            message = t("upload_summary", self.language, succeeded=self.succeeded, total=total)
        return UploadBatchSummary(
            batchId=self.id,
            userId=self.uid,
            total=total,
            succeeded=self.succeeded,
            failed=sum(1 for task in self.tasks if task.status == "failed"),
            settled=self.settled,
            message=message,
            tasks=[task.model_copy() for task in self.tasks],
        )


class UploadBatchRegistry:
    """In-memory index of batches so clients can poll progress. Settled batches expire."""

    def __init__(self, ttl_seconds: int = UPLOAD_BATCH_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._batches: Dict[str, UploadBatch] = {}

    def __len__(self):
        return len(self._batches)

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        expired = [
            batch_id for batch_id, batch in list(self._batches.items())
            if batch.settled and now - batch.finished_at > self.ttl_seconds
        ]
        for batch_id in expired:
            self._batches.pop(batch_id, None)
        if expired:
            logger.info(f"Evicted {len(expired)} settled upload batches")
        return len(expired)

    def add(self, batch: UploadBatch) -> UploadBatch:
        self.cleanup_expired()
        self._batches[batch.id] = batch
        return batch

    def get(self, batch_id: str) -> Optional[UploadBatch]:
        self.cleanup_expired()
        return self._batches.get(batch_id)


def storage_path_for(uid: str, file_name: str) -> str:
    return f"{UPLOAD_PREFIX}/{uid}/{int(time.time() * 1000)}_{file_name}"


async def upload_one(storage: StorageAdapter, uid: str, task: UploadTask, data: bytes,
                     on_permission_error: Optional[Callable[[FirestorePermissionError], None]] = None,
                     language: str = "ar") -> UploadedFileRecord:
    task.status = "uploading"
    record_id = storage.new_record_id(uid)
    path = storage_path_for(uid, task.fileName)

    def on_progress(percent: int):
        task.progress = percent

    url = await asyncio.to_thread(
        storage.upload, path, data, task.fileType, on_progress, {"recordId": record_id}
    )
    record = storage.build_record(uid, record_id, task.fileName, task.fileType, task.fileSize, url, path)
    written = await asyncio.to_thread(storage.record_metadata, record, on_permission_error)
    if not written:
        raise MetadataWriteError(t("metadata_write_failed", language))
    return record


async def run_upload_batch(storage: StorageAdapter, batch: UploadBatch,
                           on_permission_error: Optional[Callable[[FirestorePermissionError], None]] = None
                           ) -> UploadBatchSummary:
    def report(diagnostic: FirestorePermissionError):
        batch.diagnostics.append(diagnostic)
        if on_permission_error:
            on_permission_error(diagnostic)

    results = await asyncio.gather(
        *(
            upload_one(storage, batch.uid, task, data, report, batch.language)
            for task, data in zip(batch.tasks, batch.payloads)
        ),
        return_exceptions=True,
    )

    for task, result in zip(batch.tasks, results):
        if isinstance(result, Exception):
            task.status = "failed"
            task.error = str(result) or type(result).__name__
            logger.error(f"Upload of {task.fileName} failed: {task.error}")
        else:
            task.status = "succeeded"
            task.progress = 100
            task.recordId = result.id

    batch.settled = True
    batch.finished_at = time.time()
    batch.payloads = []
    summary = batch.summary()
    logger.info(f"Batch {batch.id}: {summary.succeeded}/{summary.total} uploaded")
    return summary
