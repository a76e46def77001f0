"""
Opaque blob storage for uploaded document files, keyed by filename.
"""
import asyncio
import secrets
import time
from pathlib import Path

from quotagate.core.config import settings


class LocalBlobStore:
    """Stores blobs as files under a single directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def new_key(self, original_file_name: str) -> str:
        """A unique key that keeps the original name readable, e.g. "1700000000000-123456789-report.pdf"."""
        safe_name = Path(original_file_name).name or "upload"
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}-{safe_name}"

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path.parent != self.root.resolve():
            raise ValueError(f"Invalid blob key: {key!r}")
        return path

    async def put(self, key: str, data: bytes) -> None:
        def _write():
            self.root.mkdir(parents=True, exist_ok=True)
            self._path(key).write_bytes(data)
        await asyncio.to_thread(_write)

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._path(key).read_bytes)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, True)


_blob_store: LocalBlobStore | None = None

def get_blob_store() -> LocalBlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(settings.UPLOAD_DIR)
    return _blob_store
