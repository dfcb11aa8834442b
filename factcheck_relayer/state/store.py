"""Durable request state for the relayer.

Keeps one record per on-chain request id in a JSON file so failures survive
restarts:
- process-safe file access via filelock
- schema versioning with corrupt-file backup
- bounded attempts per request, then a dead-letter status
- the last processed block, so polling resumes where it stopped
- eviction of the oldest fulfilled records beyond max_records
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from filelock import FileLock
from pydantic import BaseModel, Field

from factcheck_relayer.models.schemas import (
    FactCheckRequest,
    RequestRecord,
    RequestStatus,
)

logger = logging.getLogger(__name__)

STATE_FILENAME = "requests.json"
CURRENT_SCHEMA_VERSION = 1
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 60
DEFAULT_MAX_RECORDS = 1000


class StoreData(BaseModel):
    """Schema for the state file."""

    version: int = Field(default=CURRENT_SCHEMA_VERSION)
    cursor: Optional[int] = Field(default=None, description="Last processed block")
    requests: Dict[str, RequestRecord] = Field(default_factory=dict)


class RequestStore:
    """File-backed store of fact-check request records."""

    def __init__(
        self,
        state_dir: Path,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: int = DEFAULT_RETRY_DELAY,
        max_records: int = DEFAULT_MAX_RECORDS,
    ):
        """
        Args:
            state_dir: Directory holding the state file.
            max_attempts: Attempts before a request is dead-lettered.
            retry_delay: Seconds before a failed request is retried.
            max_records: Records to keep. The oldest fulfilled ones are evicted
                first; unfinished and dead-lettered records are always kept.
        """
        self.state_dir = Path(state_dir)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_records = max_records
        self._state_file = self.state_dir / STATE_FILENAME
        self._lock = FileLock(str(self.state_dir / f"{STATE_FILENAME}.lock"), timeout=10)

        self.state_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _load_unlocked(self) -> StoreData:
        if not self._state_file.exists():
            return StoreData()

        try:
            with open(self._state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            return StoreData.model_validate(data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"State file corrupted: {e}")
            self._backup_corrupt_file()
            return StoreData()

    def _evict_unlocked(self, data: StoreData) -> None:
        excess = len(data.requests) - self.max_records
        if excess <= 0:
            return

        fulfilled = sorted(
            (r for r in data.requests.values() if r.status == RequestStatus.FULFILLED),
            key=lambda r: r.updated_at,
        )
        evicted = fulfilled[:excess]
        for record in evicted:
            del data.requests[str(record.request_id)]
        if evicted:
            logger.debug(f"Evicted {len(evicted)} fulfilled records")

    def _save_unlocked(self, data: StoreData) -> None:
        self._evict_unlocked(data)
        tmp_file = self._state_file.with_suffix(".json.tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data.model_dump(mode="json"), f, indent=2)
        os.replace(tmp_file, self._state_file)

    def _backup_corrupt_file(self) -> None:
        backup_path = self._state_file.with_suffix(".json.corrupt")
        try:
            self._state_file.rename(backup_path)
            logger.info(f"Backed up corrupt state to {backup_path}")
        except OSError as e:
            logger.warning(f"Could not back up corrupt state: {e}")

    def _update(
        self,
        request_id: int,
        mutate: Callable[[RequestRecord], None],
    ) -> Optional[RequestRecord]:
        """Apply ``mutate`` to one record under the lock and persist it."""
        with self._lock:
            data = self._load_unlocked()
            record = data.requests.get(str(request_id))
            if record is None:
                logger.warning(f"No state record for request {request_id}")
                return None
            mutate(record)
            record.updated_at = self._now()
            self._save_unlocked(data)
            return record

    def upsert_request(self, request: FactCheckRequest) -> RequestRecord:
        """Create a pending record for a request, or return the existing one."""
        with self._lock:
            data = self._load_unlocked()
            key = str(request.request_id)
            record = data.requests.get(key)
            if record is None:
                record = RequestRecord(
                    request_id=request.request_id,
                    requester=request.requester,
                    content_uri=request.content_uri,
                )
                data.requests[key] = record
                self._save_unlocked(data)
            return record

    def get(self, request_id: int) -> Optional[RequestRecord]:
        with self._lock:
            return self._load_unlocked().requests.get(str(request_id))

    def all_records(self) -> List[RequestRecord]:
        with self._lock:
            records = list(self._load_unlocked().requests.values())
        records.sort(key=lambda r: r.request_id)
        return records

    def mark_in_flight(self, request_id: int) -> Optional[RequestRecord]:
        """Start an attempt: bump the attempt count."""

        def mutate(record: RequestRecord) -> None:
            record.status = RequestStatus.IN_FLIGHT
            record.attempts += 1
            record.next_attempt_at = None

        return self._update(request_id, mutate)

    def record_submission(
        self,
        request_id: int,
        tx_hash: str,
        verdict: str,
    ) -> Optional[RequestRecord]:
        """
        Remember a broadcast fulfillment before waiting for its receipt.

        A later attempt looks this hash up on-chain instead of sending a
        second transaction.
        """

        def mutate(record: RequestRecord) -> None:
            record.tx_hash = tx_hash
            record.verdict = verdict

        return self._update(request_id, mutate)

    def mark_fulfilled(
        self,
        request_id: int,
        tx_hash: str,
        verdict: str,
    ) -> Optional[RequestRecord]:
        def mutate(record: RequestRecord) -> None:
            record.status = RequestStatus.FULFILLED
            record.tx_hash = tx_hash
            record.verdict = verdict
            record.last_error = None
            record.next_attempt_at = None

        return self._update(request_id, mutate)

    def mark_failed(self, request_id: int, error: str) -> Optional[RequestRecord]:
        """
        Record a failed attempt.

        The request is scheduled for another attempt after ``retry_delay``
        seconds, or dead-lettered once ``max_attempts`` is reached.
        """

        def mutate(record: RequestRecord) -> None:
            record.last_error = error
            if record.attempts >= self.max_attempts:
                record.status = RequestStatus.DEAD_LETTER
                record.next_attempt_at = None
            else:
                record.status = RequestStatus.FAILED
                record.next_attempt_at = self._now() + timedelta(seconds=self.retry_delay)

        record = self._update(request_id, mutate)
        if record and record.status == RequestStatus.DEAD_LETTER:
            logger.error(
                f"Request {request_id} dead-lettered after {record.attempts} attempts: {error}"
            )
        return record

    def due_for_retry(self, now: Optional[datetime] = None) -> List[RequestRecord]:
        """Pending records and failed records whose retry time has come."""
        now = now or self._now()
        due = []
        for record in self.all_records():
            if record.status == RequestStatus.PENDING:
                due.append(record)
            elif (
                record.status == RequestStatus.FAILED
                and record.next_attempt_at is not None
                and record.next_attempt_at <= now
            ):
                due.append(record)
        return due

    def recover_in_flight(self) -> int:
        """
        Mark records left in flight by a previous process as failed, or
        dead-letter them when they have no attempts left.

        Returns:
            Number of records recovered.
        """
        with self._lock:
            data = self._load_unlocked()
            stale = [
                r for r in data.requests.values() if r.status == RequestStatus.IN_FLIGHT
            ]
            for record in stale:
                record.last_error = "Interrupted by relayer shutdown"
                record.updated_at = self._now()
                if record.attempts >= self.max_attempts:
                    record.status = RequestStatus.DEAD_LETTER
                    record.next_attempt_at = None
                    logger.error(
                        f"Request {record.request_id} dead-lettered after "
                        f"{record.attempts} attempts: interrupted"
                    )
                else:
                    record.status = RequestStatus.FAILED
                    record.next_attempt_at = self._now()
            if stale:
                self._save_unlocked(data)
        return len(stale)

    def dead_letters(self) -> List[RequestRecord]:
        return [r for r in self.all_records() if r.status == RequestStatus.DEAD_LETTER]

    def requeue(self, request_id: int) -> Optional[RequestRecord]:
        """Give a dead-lettered or failed request a fresh set of attempts."""

        def mutate(record: RequestRecord) -> None:
            record.status = RequestStatus.PENDING
            record.attempts = 0
            record.next_attempt_at = None

        record = self.get(request_id)
        if record is None or record.status not in (
            RequestStatus.DEAD_LETTER,
            RequestStatus.FAILED,
        ):
            return None
        return self._update(request_id, mutate)

    def get_cursor(self) -> Optional[int]:
        with self._lock:
            return self._load_unlocked().cursor

    def set_cursor(self, block_number: int) -> None:
        with self._lock:
            data = self._load_unlocked()
            data.cursor = block_number
            self._save_unlocked(data)
