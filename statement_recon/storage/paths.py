"""
Path generation for statement document storage.
All paths are relative to ARTIFACT_ROOT.
"""

import hashlib
import re
from pathlib import Path


def doc_hash(file_bytes: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(file_bytes).hexdigest()


def _slug(value: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", value or "").strip("_")
    return slug or "unknown"


def statement_document_path(year: int, month: int, company: str, bank: str, kind: str = "monthly") -> str:
    """Path for an uploaded statement PDF, one per company/bank/month and kind."""
    company_slug = _slug(company)
    bank_slug = _slug(bank)
    suffix = "" if kind == "monthly" else f"_{kind}"
    return (
        f"statement_documents/{year}/{month:02d}/{company_slug}/"
        f"bank_statement_{company_slug}_{bank_slug}_{year}_{month:02d}{suffix}.pdf"
    )


def ensure_parent_dirs(artifact_root: str, relative_path: str) -> Path:
    """Create parent directories and return the full absolute path."""
    full_path = Path(artifact_root) / relative_path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    return full_path
