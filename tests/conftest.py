"""
Shared test fixtures.
"""

from decimal import Decimal

import pytest

from statement_recon.engines.stub_engine import StubEngine, StubUnlocker
from statement_recon.pipeline.orchestrator import ExtractionPipeline
from statement_recon.schemas.batches import UploadItem
from statement_recon.schemas.extraction import DocumentHandle
from statement_recon.schemas.statements import BankAccount, MonthlyBalance, StatementExtraction
from statement_recon.service import StatementService
from statement_recon.storage.artifact_store import ArtifactStore
from statement_recon.storage.bank_directory import InMemoryBankDirectory
from statement_recon.storage.cycle_store import InMemoryCycleService
from statement_recon.storage.record_store import InMemoryRecordStore


@pytest.fixture
def kcb_bank():
    return BankAccount(
        id="bank-kcb",
        bank_name="KCB",
        account_number="1234567890",
        currency="KES",
        company_id="co-1",
        company_name="Acme Ltd",
    )


@pytest.fixture
def equity_bank():
    return BankAccount(
        id="bank-equity",
        bank_name="Equity Bank",
        account_number="0123456789",
        currency="KES",
        company_id="co-1",
        company_name="Acme Ltd",
        password="stored-pass",
    )


@pytest.fixture
def other_company_bank():
    return BankAccount(
        id="bank-stanbic",
        bank_name="Stanbic Bank",
        account_number="5550001111",
        currency="USD",
        company_id="co-2",
        company_name="Beta Ltd",
    )


@pytest.fixture
def banks(kcb_bank, equity_bank, other_company_bank):
    return [kcb_bank, equity_bank, other_company_bank]


@pytest.fixture
def range_extraction():
    """Q1 2024 statement with one closing balance per month."""
    return StatementExtraction(
        bank_name="KCB Bank Kenya",
        account_number="1234567890",
        currency="KSH",
        company_name="Acme Ltd",
        statement_period="01/01/2024 - 31/03/2024",
        monthly_balances=[
            MonthlyBalance(month=1, year=2024, opening_balance=Decimal("1000.00"), closing_balance=Decimal("1500.00")),
            MonthlyBalance(month=2, year=2024, opening_balance=Decimal("1500.00"), closing_balance=Decimal("1750.50")),
            MonthlyBalance(month=3, year=2024, opening_balance=Decimal("1750.50"), closing_balance=Decimal("900.25")),
        ],
        total_pages=6,
    )


@pytest.fixture
def february_extraction():
    return StatementExtraction(
        bank_name="KCB Bank Kenya",
        account_number="1234567890",
        currency="KES",
        statement_period="01/02/2024 - 29/02/2024",
        monthly_balances=[
            MonthlyBalance(month=2, year=2024, opening_balance=Decimal("1500.00"), closing_balance=Decimal("1760.00")),
        ],
        total_pages=2,
    )


@pytest.fixture
def make_item(tmp_path):
    """Factory: write a small placeholder PDF and wrap it in an UploadItem."""
    def _make(file_name: str, index: int = 0, create: bool = True) -> UploadItem:
        path = tmp_path / "uploads" / file_name
        if create:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"%PDF-1.4\n% statement placeholder\n")
        return UploadItem(
            index=index,
            document=DocumentHandle(path=str(path), file_name=file_name, size_bytes=34),
        )
    return _make


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def cycles():
    return InMemoryCycleService()


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(root=str(tmp_path / "artifacts"), secret="test-secret")


@pytest.fixture
def stub_engine(range_extraction):
    return StubEngine(default=range_extraction)


@pytest.fixture
def stub_unlocker():
    return StubUnlocker()


@pytest.fixture
def pipeline(stub_engine, stub_unlocker):
    return ExtractionPipeline(
        stub_engine,
        stub_unlocker,
        max_attempts=3,
        timeout_seconds=1.0,
        backoff_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture
def service(record_store, cycles, artifact_store, banks, pipeline):
    return StatementService(
        store=record_store,
        cycles=cycles,
        objects=artifact_store,
        banks=InMemoryBankDirectory(banks),
        pipeline=pipeline,
    )
