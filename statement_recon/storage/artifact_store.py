"""
Object storage for statement documents.
Phase 1: Local filesystem (volume mount) with HMAC-signed download URLs.
Migration path to S3-compatible storage designed in via ObjectStore.
"""

import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import structlog

from statement_recon.config import settings
from statement_recon.storage.paths import ensure_parent_dirs

logger = structlog.get_logger(__name__)

DOCUMENT_URL_PREFIX = "/api/v1/statements/documents"


class ObjectStore(ABC):
    """Byte storage addressed by relative path."""

    @abstractmethod
    def put(self, relative_path: str, data: bytes) -> str:
        ...

    @abstractmethod
    def get(self, relative_path: str) -> bytes:
        ...

    @abstractmethod
    def exists(self, relative_path: str) -> bool:
        ...

    @abstractmethod
    def delete(self, relative_path: str) -> bool:
        ...

    @abstractmethod
    def signed_url(self, relative_path: str, expires_in: Optional[int] = None) -> str:
        """Time-bounded URL granting read access to one object."""
        ...

    @abstractmethod
    def verify_signed_url(self, relative_path: str, expires: int, signature: str) -> bool:
        ...


class ArtifactStore(ObjectStore):
    """
    Save and load statement documents to/from the local filesystem.
    All paths are relative to ARTIFACT_ROOT.
    """

    def __init__(self, root: Optional[str] = None, secret: Optional[str] = None):
        self.root = Path(root or settings.ARTIFACT_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = (secret or settings.SIGNED_URL_SECRET).encode("utf-8")

    def _resolve(self, relative_path: str) -> Path:
        full_path = (self.root / relative_path).resolve()
        if self.root.resolve() not in full_path.parents:
            raise ValueError(f"Path escapes artifact root: {relative_path}")
        return full_path

    def put(self, relative_path: str, data: bytes) -> str:
        """Save raw bytes (PDF). Returns the relative path."""
        self._resolve(relative_path)
        full_path = ensure_parent_dirs(str(self.root), relative_path)
        full_path.write_bytes(data)
        logger.info("artifact_saved", path=relative_path, size_bytes=len(data))
        return relative_path

    def get(self, relative_path: str) -> bytes:
        full_path = self._resolve(relative_path)
        if not full_path.exists():
            raise FileNotFoundError(f"Artifact not found: {relative_path}")
        return full_path.read_bytes()

    def exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).exists()

    def delete(self, relative_path: str) -> bool:
        """Delete an artifact. Returns True if it existed."""
        full_path = self._resolve(relative_path)
        if full_path.exists():
            full_path.unlink()
            logger.info("artifact_deleted", path=relative_path)
            return True
        return False

    def full_path(self, relative_path: str) -> Path:
        """Get the absolute filesystem path for an artifact."""
        return self._resolve(relative_path)

    def _signature(self, relative_path: str, expires: int) -> str:
        message = f"{relative_path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, relative_path: str, expires_in: Optional[int] = None) -> str:
        ttl = expires_in if expires_in is not None else settings.SIGNED_URL_TTL_SECONDS
        expires = int(time.time()) + ttl
        signature = self._signature(relative_path, expires)
        return f"{DOCUMENT_URL_PREFIX}/{quote(relative_path)}?expires={expires}&signature={signature}"

    def verify_signed_url(
        self,
        relative_path: str,
        expires: int,
        signature: str,
        now: Optional[float] = None,
    ) -> bool:
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(relative_path, expires), signature)
