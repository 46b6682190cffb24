"""
Extraction pipeline orchestrator: drives upload items through bank matching,
password unlocking and engine extraction.

Per item: HINTS → MATCH → UNLOCK → EXTRACT (timeout + retry) → CLASSIFY → RECORD

Item states:
    pending → processing → {matched | unmatched | failed}
    matched → uploaded → vouched
unmatched recovers via manual bank assignment, failed via retry or manual
period entry. Batches run one document at a time through SequentialWorker.
"""

import asyncio
import time
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from statement_recon.config import settings
from statement_recon.engines.base import EngineError, ExtractionEngine, PasswordUnlocker
from statement_recon.errors import BankReferenceInvalid, InvalidTransition, SourceFileMissing
from statement_recon.models.enums import JobStatus, MatchSource, PasswordState, UploadStatus
from statement_recon.observability.logging import bind_batch_context
from statement_recon.observability.metrics import (
    batch_items_in_flight,
    extraction_attempts_total,
    extraction_duration_seconds,
    password_unlocks_total,
    upload_items_total,
)
from statement_recon.pipeline.bank_matcher import match_bank
from statement_recon.pipeline.filename_hints import detect_filename_hints
from statement_recon.pipeline.month_range import generate_month_range
from statement_recon.pipeline.period_parser import format_period
from statement_recon.pipeline.statement_classifier import classify_statement
from statement_recon.schemas.batches import BatchSummary, ItemFailure, Job, UploadItem
from statement_recon.schemas.extraction import (
    STATEMENT_FIELD_SCHEMA,
    ExtractionFailure,
    ExtractionResult,
    ExtractionSuccess,
)
from statement_recon.schemas.statements import (
    BankAccount,
    MonthlyBalance,
    StatementExtraction,
    StatementPeriod,
)

logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: dict[UploadStatus, set[UploadStatus]] = {
    UploadStatus.PENDING: {UploadStatus.PROCESSING, UploadStatus.MATCHED},
    UploadStatus.PROCESSING: {UploadStatus.MATCHED, UploadStatus.UNMATCHED, UploadStatus.FAILED},
    UploadStatus.MATCHED: {UploadStatus.PROCESSING, UploadStatus.MATCHED, UploadStatus.UPLOADED},
    UploadStatus.UNMATCHED: {UploadStatus.PENDING, UploadStatus.PROCESSING, UploadStatus.MATCHED},
    UploadStatus.FAILED: {UploadStatus.PENDING, UploadStatus.PROCESSING, UploadStatus.MATCHED},
    UploadStatus.UPLOADED: {UploadStatus.VOUCHED},
    UploadStatus.VOUCHED: set(),
}


def transition(item: UploadItem, status: UploadStatus) -> UploadItem:
    """Move an item to a new status or raise InvalidTransition."""
    if status not in ALLOWED_TRANSITIONS[item.status]:
        raise InvalidTransition(
            f"Upload item {item.index} cannot move from {item.status.value} to {status.value}",
            context={"item_index": item.index, "from": item.status.value, "to": status.value},
        )
    item.status = status
    upload_items_total.labels(status=status.value).inc()
    return item


def _fail(item: UploadItem, error_code: str, message: str) -> UploadItem:
    item.error = message
    item.error_code = error_code
    return transition(item, UploadStatus.FAILED)


def backoff_delay(attempt: int, base: float, ceiling: float) -> float:
    """Exponential delay before retry number `attempt` (1-based)."""
    return min(base * (2 ** (attempt - 1)), ceiling)


class ExtractionPipeline:
    """
    Runs one upload item at a time through match, unlock and extract.
    Never raises for item-level problems; the outcome is recorded on the item.
    """

    def __init__(
        self,
        engine: ExtractionEngine,
        unlocker: PasswordUnlocker,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.unlocker = unlocker
        self.max_attempts = max_attempts or settings.EXTRACTION_MAX_ATTEMPTS
        self.timeout_seconds = timeout_seconds or settings.EXTRACTION_TIMEOUT_SECONDS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.EXTRACTION_BACKOFF_SECONDS
        )
        self.backoff_max_seconds = (
            backoff_max_seconds if backoff_max_seconds is not None else settings.EXTRACTION_BACKOFF_MAX_SECONDS
        )
        self._sleep = sleep

    async def process_item(
        self,
        item: UploadItem,
        banks: Sequence[BankAccount],
        company_id: Optional[str] = None,
    ) -> UploadItem:
        log = logger.bind(item_index=item.index, file_name=item.file_name)
        transition(item, UploadStatus.PROCESSING)
        item.error = None
        item.error_code = None

        try:
            if not Path(item.document.path).is_file():
                raise SourceFileMissing(
                    f"Source file not found: {item.document.path}",
                    context={"item_index": item.index, "path": item.document.path},
                )

            # ── Hints + bank match ──
            item.detected = detect_filename_hints(item.file_name)
            if item.matched_bank is None:
                match = match_bank(item.detected, banks, company_id=company_id)
                if match.bank is None:
                    item.error = "No bank account matched the file name"
                    item.error_code = "ERR_BANK_UNMATCHED"
                    log.info("item_unmatched", hints=item.detected.model_dump())
                    return transition(item, UploadStatus.UNMATCHED)
                item.matched_bank = match.bank
                item.match_confidence = match.confidence
                item.match_source = match.source

            # ── Password ──
            password = await self._unlock(item)
            if item.password_state == PasswordState.NEEDS_PASSWORD:
                log.info("item_needs_password")
                return _fail(item, "ERR_PASSWORD_REQUIRED", "Document is password protected and no known password opens it")

            # ── Extract ──
            result = await self.extract_with_retry(item, password)

        except (SourceFileMissing, BankReferenceInvalid) as e:
            log.warning("item_failed_fatal", error_code=e.error_code, error=e.message)
            return _fail(item, e.error_code, e.message)
        except Exception as e:
            log.error("item_failed_unexpected", error=str(e), error_type=type(e).__name__)
            return _fail(item, "ERR_PIPELINE", str(e))

        if isinstance(result, ExtractionFailure):
            log.warning("item_extraction_failed", attempts=result.attempts, error=result.reason)
            return _fail(item, result.error_code, result.reason)

        item.extracted = result.payload
        classification = classify_statement(result.payload)
        item.guessed_kind = classification.kind
        log.info(
            "item_matched",
            bank_id=item.matched_bank.id,
            kind=classification.kind.value,
            reason=classification.reason,
            attempts=result.attempts,
        )
        return transition(item, UploadStatus.MATCHED)

    async def _unlock(self, item: UploadItem) -> Optional[str]:
        """Stored bank password first, then the filename password, then one supplied by hand."""
        if not await self.unlocker.is_password_protected(item.document):
            item.password_state = PasswordState.NOT_PROTECTED
            return None

        candidates: list[str] = []
        for candidate in (
            item.matched_bank.password if item.matched_bank else None,
            item.detected.password,
            item.password,
        ):
            if candidate and candidate not in candidates:
                candidates.append(candidate)

        for candidate in candidates:
            if await self.unlocker.try_password(item.document, candidate):
                item.password = candidate
                item.password_state = PasswordState.UNLOCKED
                password_unlocks_total.labels(outcome="unlocked").inc()
                return candidate

        item.password_state = PasswordState.NEEDS_PASSWORD
        password_unlocks_total.labels(outcome="needs_password").inc()
        return None

    async def extract_with_retry(self, item: UploadItem, password: Optional[str]) -> ExtractionResult:
        """Call the engine under a timeout, retrying retryable failures with exponential backoff.
        item.retry_count counts failed attempts of this run only, so it never exceeds max_attempts.
        """
        engine_name = self.engine.engine_name
        attempts = 0
        item.retry_count = 0

        while True:
            attempts += 1
            started = time.monotonic()
            try:
                payload = await asyncio.wait_for(
                    self.engine.extract_statement(item.document, STATEMENT_FIELD_SCHEMA, password),
                    timeout=self.timeout_seconds,
                )
                extraction_attempts_total.labels(engine_name=engine_name, outcome="success").inc()
                return ExtractionSuccess(payload=payload, attempts=attempts, engine_name=engine_name)
            except asyncio.TimeoutError:
                failure = ExtractionFailure(
                    reason=f"Extraction timed out after {self.timeout_seconds}s",
                    retryable=True,
                    error_code="ERR_EXTRACTION_TIMEOUT",
                    attempts=attempts,
                )
                outcome = "timeout"
            except EngineError as e:
                failure = ExtractionFailure(
                    reason=e.message,
                    retryable=e.retryable,
                    error_code=e.error_code,
                    attempts=attempts,
                )
                outcome = "error"
            finally:
                extraction_duration_seconds.labels(engine_name=engine_name).observe(time.monotonic() - started)

            item.retry_count += 1
            extraction_attempts_total.labels(engine_name=engine_name, outcome=outcome).inc()
            logger.warning(
                "extraction_attempt_failed",
                item_index=item.index,
                attempt=attempts,
                retryable=failure.retryable,
                error_code=failure.error_code,
                error=failure.reason,
            )

            if not failure.retryable or attempts >= self.max_attempts:
                return failure
            await self._sleep(backoff_delay(attempts, self.backoff_seconds, self.backoff_max_seconds))


def assign_bank(item: UploadItem, bank: BankAccount) -> UploadItem:
    """Manual bank assignment. An unmatched item goes back to pending for another run."""
    item.matched_bank = bank
    item.match_confidence = 1.0
    item.match_source = MatchSource.MANUAL
    if item.status == UploadStatus.UNMATCHED:
        item.error = None
        item.error_code = None
        transition(item, UploadStatus.PENDING)
    return item


def provide_password(item: UploadItem, password: str) -> UploadItem:
    """Password supplied by hand for an item the pipeline could not unlock."""
    item.password = password
    if item.status == UploadStatus.FAILED and item.password_state == PasswordState.NEEDS_PASSWORD:
        item.error = None
        item.error_code = None
        transition(item, UploadStatus.PENDING)
    return item


def enter_period(
    item: UploadItem,
    period: StatementPeriod,
    bank: Optional[BankAccount] = None,
    closing_balance: Optional[Decimal] = None,
) -> UploadItem:
    """
    Manual period entry: synthesise a minimal payload for the item without
    calling the engine and mark it matched. One placeholder balance per month;
    a supplied closing balance lands on the last month.
    """
    bank = bank or item.matched_bank
    if bank is None:
        raise BankReferenceInvalid(
            f"Upload item {item.index} has no bank; assign one before entering a period",
            context={"item_index": item.index},
        )

    months = generate_month_range(period)
    balances = [MonthlyBalance(month=ref.month, year=ref.year) for ref in months]
    if closing_balance is not None:
        balances[-1].closing_balance = closing_balance

    previous = item.extracted or StatementExtraction()
    item.extracted = StatementExtraction(
        bank_name=previous.bank_name or bank.bank_name,
        account_number=previous.account_number or bank.account_number,
        currency=previous.currency or bank.currency,
        company_name=previous.company_name or bank.company_name,
        statement_period=format_period(period),
        closing_balance=closing_balance,
        monthly_balances=balances,
        total_pages=previous.total_pages,
    )
    if item.matched_bank is None or item.matched_bank.id != bank.id:
        item.matched_bank = bank
        item.match_source = MatchSource.MANUAL
        item.match_confidence = 1.0
    item.manual_period = period
    item.guessed_kind = classify_statement(item.extracted).kind
    item.error = None
    item.error_code = None

    logger.info(
        "manual_period_entered",
        item_index=item.index,
        bank_id=bank.id,
        period=item.extracted.statement_period,
        kind=item.guessed_kind.value,
    )
    return transition(item, UploadStatus.MATCHED)


class SequentialWorker:
    """
    Batch runner with a concurrency limit of one: a single document is held by
    the extraction engine at any moment. Honors Job.stop_requested between items.
    """

    max_concurrency = 1

    def __init__(self, pipeline: ExtractionPipeline):
        self.pipeline = pipeline
        self._slot = asyncio.Semaphore(self.max_concurrency)

    async def run(
        self,
        items: Sequence[UploadItem],
        banks: Sequence[BankAccount],
        job: Optional[Job] = None,
        company_id: Optional[str] = None,
        stop_signal: Optional[Callable[[], bool]] = None,
        on_progress: Optional[Callable[[BatchSummary], None]] = None,
    ) -> BatchSummary:
        """
        stop_signal is polled between items for stops requested from another process.
        on_progress receives a summary once the run starts and after every item.
        """
        job = job or Job()
        job.total = len(items)
        job.processed = job.succeeded = job.failed = 0
        job.status = JobStatus.RUNNING
        bind_batch_context(job.id, job.total)

        failures: list[ItemFailure] = []
        skipped = 0

        logger.info("batch_started", total=job.total)
        if on_progress is not None:
            on_progress(self._summary(job, items, failures, skipped))

        for item in items:
            if not job.stop_requested and stop_signal is not None and stop_signal():
                job.request_stop()
            if job.stop_requested:
                job.status = JobStatus.STOPPED
                break

            job.current_item = item.index
            if item.is_terminal:
                skipped += 1
                job.processed += 1
                if on_progress is not None:
                    on_progress(self._summary(job, items, failures, skipped))
                continue

            async with self._slot:
                batch_items_in_flight.inc()
                try:
                    await self.pipeline.process_item(item, banks, company_id=company_id)
                finally:
                    batch_items_in_flight.dec()

            job.processed += 1
            if item.status == UploadStatus.MATCHED:
                job.succeeded += 1
            else:
                job.failed += 1
                failures.append(ItemFailure(
                    item_index=item.index,
                    file_name=item.file_name,
                    error_code=item.error_code or "ERR_UNKNOWN",
                    message=item.error or item.status.value,
                    retryable=item.status == UploadStatus.FAILED and item.error_code in (
                        "ERR_EXTRACTION", "ERR_EXTRACTION_TIMEOUT", "ERR_PDF_READ",
                    ),
                ))
            if on_progress is not None:
                on_progress(self._summary(job, items, failures, skipped))

        skipped += len(items) - job.processed
        job.current_item = None
        if job.status != JobStatus.STOPPED:
            job.status = JobStatus.COMPLETED

        logger.info(
            "batch_finished",
            status=job.status.value,
            succeeded=job.succeeded,
            failed=job.failed,
            skipped=skipped,
        )
        return self._summary(job, items, failures, skipped)

    @staticmethod
    def _summary(
        job: Job, items: Sequence[UploadItem], failures: list[ItemFailure], skipped: int,
    ) -> BatchSummary:
        return BatchSummary(
            job=job,
            succeeded=job.succeeded,
            failed=job.failed,
            skipped=skipped,
            failures=list(failures),
            items=list(items),
        )
