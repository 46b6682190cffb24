"""
Tests for the per-item extraction pipeline: matching, unlocking, retries and
the manual corrections that recover failed items.
"""

import pytest

from statement_recon.engines.base import EngineError
from statement_recon.engines.stub_engine import StubEngine, StubUnlocker
from statement_recon.errors import BankReferenceInvalid, InvalidTransition
from statement_recon.models.enums import MatchSource, PasswordState, StatementKind, UploadStatus
from statement_recon.pipeline.orchestrator import (
    ExtractionPipeline,
    assign_bank,
    backoff_delay,
    enter_period,
    provide_password,
    transition,
)
from statement_recon.schemas.statements import StatementPeriod

KCB_FILE = "KCB_1234567890_Q1_2024.pdf"
EQUITY_FILE = "Equity_0123456789_pw_4521.pdf"


def _transient(message: str = "engine unavailable") -> EngineError:
    return EngineError("stub", "ERR_EXTRACTION", message, retryable=True)


class TestHappyPath:

    async def test_matched_by_account_number(self, pipeline, stub_engine, make_item, banks, kcb_bank):
        item = await pipeline.process_item(make_item(KCB_FILE), banks)

        assert item.status == UploadStatus.MATCHED
        assert item.matched_bank == kcb_bank
        assert item.match_source == MatchSource.ACCOUNT_NUMBER
        assert item.password_state == PasswordState.NOT_PROTECTED
        assert item.guessed_kind == StatementKind.RANGE
        assert len(item.extracted.monthly_balances) == 3
        assert item.retry_count == 0
        assert stub_engine.calls == [(KCB_FILE, None)]

    async def test_unmatched_never_reaches_engine(self, pipeline, stub_engine, make_item, banks):
        item = await pipeline.process_item(make_item("statement_scan.pdf"), banks)

        assert item.status == UploadStatus.UNMATCHED
        assert item.error_code == "ERR_BANK_UNMATCHED"
        assert stub_engine.calls == []

    async def test_missing_file_is_fatal(self, pipeline, stub_engine, make_item, banks):
        item = await pipeline.process_item(make_item(KCB_FILE, create=False), banks)

        assert item.status == UploadStatus.FAILED
        assert item.error_code == "ERR_FILE_NOT_FOUND"
        assert item.retry_count == 0
        assert stub_engine.calls == []

    async def test_manual_assignment_recovers_unmatched(self, pipeline, make_item, banks, kcb_bank):
        item = await pipeline.process_item(make_item("statement_scan.pdf"), banks)
        assign_bank(item, kcb_bank)

        assert item.status == UploadStatus.PENDING
        assert item.match_source == MatchSource.MANUAL
        assert item.match_confidence == 1.0

        await pipeline.process_item(item, banks)
        assert item.status == UploadStatus.MATCHED
        assert item.matched_bank == kcb_bank
        assert item.match_source == MatchSource.MANUAL


class TestRetries:

    async def test_persistent_failure_then_manual_period(self, range_extraction, stub_unlocker, make_item, banks):
        engine = StubEngine(scripts={KCB_FILE: [_transient(), _transient(), _transient()]})
        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=3, timeout_seconds=1.0,
                                      backoff_seconds=0, backoff_max_seconds=0)

        item = await pipeline.process_item(make_item(KCB_FILE), banks)
        assert item.status == UploadStatus.FAILED
        assert item.retry_count == 3
        assert len(engine.calls) == 3

        enter_period(item, StatementPeriod(start_month=1, start_year=2024, end_month=3, end_year=2024))
        assert item.status == UploadStatus.MATCHED
        assert len(engine.calls) == 3
        assert item.guessed_kind == StatementKind.RANGE
        assert item.extracted.statement_period == "01/01/2024 - 31/03/2024"
        assert [(b.month, b.closing_balance) for b in item.extracted.monthly_balances] == [
            (1, None), (2, None), (3, None),
        ]

    async def test_retry_counter_is_per_run(self, stub_unlocker, make_item, banks):
        engine = StubEngine(scripts={KCB_FILE: [_transient()]})
        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=3, timeout_seconds=1.0,
                                      backoff_seconds=0, backoff_max_seconds=0)

        item = await pipeline.process_item(make_item(KCB_FILE), banks)
        await pipeline.process_item(item, banks)

        assert item.status == UploadStatus.FAILED
        assert item.retry_count == 3
        assert len(engine.calls) == 6

    async def test_recovers_after_transient_failure(self, range_extraction, stub_unlocker, make_item, banks):
        engine = StubEngine(scripts={KCB_FILE: [_transient(), range_extraction]})
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=3, timeout_seconds=1.0,
                                      backoff_seconds=0.5, backoff_max_seconds=10, sleep=record_sleep)
        item = await pipeline.process_item(make_item(KCB_FILE), banks)

        assert item.status == UploadStatus.MATCHED
        assert item.retry_count == 1
        assert len(engine.calls) == 2
        assert delays == [0.5]

    async def test_backoff_between_attempts(self, stub_unlocker, make_item, banks):
        engine = StubEngine(scripts={KCB_FILE: [_transient()]})
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=4, timeout_seconds=1.0,
                                      backoff_seconds=1.0, backoff_max_seconds=3.0, sleep=record_sleep)
        await pipeline.process_item(make_item(KCB_FILE), banks)

        assert delays == [1.0, 2.0, 3.0]

    async def test_non_retryable_error_stops_immediately(self, stub_unlocker, make_item, banks):
        engine = StubEngine(scripts={KCB_FILE: [EngineError("stub", "ERR_NO_TEXT_LAYER", "scanned", retryable=False)]})
        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=3, timeout_seconds=1.0,
                                      backoff_seconds=0, backoff_max_seconds=0)

        item = await pipeline.process_item(make_item(KCB_FILE), banks)
        assert item.status == UploadStatus.FAILED
        assert item.error_code == "ERR_NO_TEXT_LAYER"
        assert item.retry_count == 1
        assert len(engine.calls) == 1

    async def test_timeout_is_retryable(self, range_extraction, stub_unlocker, make_item, banks):
        engine = StubEngine(default=range_extraction, delay_seconds=0.5)
        pipeline = ExtractionPipeline(engine, stub_unlocker, max_attempts=2, timeout_seconds=0.05,
                                      backoff_seconds=0, backoff_max_seconds=0)

        item = await pipeline.process_item(make_item(KCB_FILE), banks)
        assert item.status == UploadStatus.FAILED
        assert item.error_code == "ERR_EXTRACTION_TIMEOUT"
        assert item.retry_count == 2
        assert len(engine.calls) == 2

    def test_backoff_delay(self):
        assert backoff_delay(1, 1.0, 30.0) == 1.0
        assert backoff_delay(2, 1.0, 30.0) == 2.0
        assert backoff_delay(3, 1.0, 30.0) == 4.0
        assert backoff_delay(10, 1.0, 30.0) == 30.0


class TestPasswords:

    async def test_stored_password_tried_before_filename(self, stub_engine, make_item, banks):
        unlocker = StubUnlocker(passwords={EQUITY_FILE: "4521"})
        pipeline = ExtractionPipeline(stub_engine, unlocker, max_attempts=1, timeout_seconds=1.0)

        item = await pipeline.process_item(make_item(EQUITY_FILE), banks)

        assert unlocker.tried == [(EQUITY_FILE, "stored-pass"), (EQUITY_FILE, "4521")]
        assert item.status == UploadStatus.MATCHED
        assert item.password == "4521"
        assert item.password_state == PasswordState.UNLOCKED
        assert stub_engine.calls == [(EQUITY_FILE, "4521")]

    async def test_stored_password_opens_document(self, stub_engine, make_item, banks):
        unlocker = StubUnlocker(passwords={EQUITY_FILE: "stored-pass"})
        pipeline = ExtractionPipeline(stub_engine, unlocker, max_attempts=1, timeout_seconds=1.0)

        item = await pipeline.process_item(make_item(EQUITY_FILE), banks)

        assert unlocker.tried == [(EQUITY_FILE, "stored-pass")]
        assert item.password == "stored-pass"

    async def test_needs_password_then_provided(self, stub_engine, make_item, banks):
        unlocker = StubUnlocker(passwords={EQUITY_FILE: "secret"})
        pipeline = ExtractionPipeline(stub_engine, unlocker, max_attempts=1, timeout_seconds=1.0)

        item = await pipeline.process_item(make_item(EQUITY_FILE), banks)
        assert item.status == UploadStatus.FAILED
        assert item.error_code == "ERR_PASSWORD_REQUIRED"
        assert item.password_state == PasswordState.NEEDS_PASSWORD
        assert stub_engine.calls == []

        provide_password(item, "secret")
        assert item.status == UploadStatus.PENDING

        await pipeline.process_item(item, banks)
        assert item.status == UploadStatus.MATCHED
        assert stub_engine.calls == [(EQUITY_FILE, "secret")]


class TestManualCorrections:

    def test_enter_period_requires_bank(self, make_item):
        item = make_item(KCB_FILE)
        with pytest.raises(BankReferenceInvalid):
            enter_period(item, StatementPeriod.single(1, 2024))

    def test_enter_period_closing_balance_on_last_month(self, make_item, kcb_bank):
        item = make_item(KCB_FILE)
        enter_period(
            item,
            StatementPeriod(start_month=11, start_year=2023, end_month=1, end_year=2024),
            bank=kcb_bank,
            closing_balance=2500,
        )
        assert item.status == UploadStatus.MATCHED
        assert item.matched_bank == kcb_bank
        assert item.extracted.bank_name == "KCB"
        balances = item.extracted.monthly_balances
        assert [(b.month, b.year) for b in balances] == [(11, 2023), (12, 2023), (1, 2024)]
        assert balances[-1].closing_balance == 2500
        assert balances[0].closing_balance is None

    def test_single_month_entry_is_monthly(self, make_item, kcb_bank):
        item = make_item(KCB_FILE)
        enter_period(item, StatementPeriod.single(6, 2024), bank=kcb_bank)
        assert item.guessed_kind == StatementKind.MONTHLY

    def test_vouch_requires_upload(self, make_item, kcb_bank):
        item = make_item(KCB_FILE)
        enter_period(item, StatementPeriod.single(6, 2024), bank=kcb_bank)
        with pytest.raises(InvalidTransition) as exc_info:
            transition(item, UploadStatus.VOUCHED)
        assert exc_info.value.context["from"] == "matched"
        assert item.status == UploadStatus.MATCHED
