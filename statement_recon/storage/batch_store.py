"""
Batch state storage.
A BatchSummary (job progress plus every upload item) is saved when a run
starts and after each item so HTTP callers and the RQ worker share it; the
stop flag lives beside it.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from redis import Redis

from statement_recon.schemas.batches import BatchSummary

logger = structlog.get_logger(__name__)

BATCH_TTL_SECONDS = 7 * 24 * 3600


class BatchStore(ABC):

    @abstractmethod
    def save(self, summary: BatchSummary) -> None:
        ...

    @abstractmethod
    def load(self, job_id: str) -> Optional[BatchSummary]:
        ...

    @abstractmethod
    def request_stop(self, job_id: str) -> None:
        ...

    @abstractmethod
    def stop_requested(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def clear_stop(self, job_id: str) -> None:
        ...

    def ping(self) -> bool:
        return True


class InMemoryBatchStore(BatchStore):

    def __init__(self):
        self._batches: dict[str, str] = {}
        self._stops: set[str] = set()

    def save(self, summary: BatchSummary) -> None:
        self._batches[summary.job.id] = summary.model_dump_json()

    def load(self, job_id: str) -> Optional[BatchSummary]:
        raw = self._batches.get(job_id)
        return BatchSummary.model_validate_json(raw) if raw else None

    def request_stop(self, job_id: str) -> None:
        self._stops.add(job_id)

    def stop_requested(self, job_id: str) -> bool:
        return job_id in self._stops

    def clear_stop(self, job_id: str) -> None:
        self._stops.discard(job_id)


class RedisBatchStore(BatchStore):

    def __init__(self, conn: Redis, prefix: str = "statement-batch"):
        self._conn = conn
        self._prefix = prefix

    def _key(self, job_id: str, suffix: str = "summary") -> str:
        return f"{self._prefix}:{job_id}:{suffix}"

    def save(self, summary: BatchSummary) -> None:
        self._conn.set(self._key(summary.job.id), summary.model_dump_json(), ex=BATCH_TTL_SECONDS)
        logger.debug("batch_saved", job_id=summary.job.id, status=summary.job.status.value)

    def load(self, job_id: str) -> Optional[BatchSummary]:
        raw = self._conn.get(self._key(job_id))
        return BatchSummary.model_validate_json(raw) if raw else None

    def request_stop(self, job_id: str) -> None:
        self._conn.set(self._key(job_id, "stop"), "1", ex=BATCH_TTL_SECONDS)

    def stop_requested(self, job_id: str) -> bool:
        return bool(self._conn.exists(self._key(job_id, "stop")))

    def clear_stop(self, job_id: str) -> None:
        self._conn.delete(self._key(job_id, "stop"))

    def ping(self) -> bool:
        return bool(self._conn.ping())
