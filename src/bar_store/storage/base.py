"""Object store interface.

One client instance is shared by every component of a run and passed in
explicitly, so tests can hand over an ``InMemoryObjectStore`` instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from ..errors import ObjectNotFoundError


@dataclass(frozen=True)
class ObjectInfo:
    """Listing entry.

    Attributes:
        key: Object key within the bucket.
        generation: Storage version token; changes on every overwrite.
        size: Size in bytes.
    """

    key: str
    generation: str
    size: int


class ObjectStore(ABC):
    """Abstract bucket-scoped object store."""

    bucket: str

    @abstractmethod
    def stat(self, key: str) -> ObjectInfo:
        """Metadata for ``key``; raises ObjectNotFoundError when absent."""
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Full object body; raises ObjectNotFoundError when absent."""
        ...

    @abstractmethod
    def put(
        self,
        key: str,
        data: bytes,
        *,
        if_absent: bool = False,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo:
        """Write ``data`` at ``key``.

        With ``if_absent`` the write only succeeds when nothing exists at
        ``key``; otherwise ObjectAlreadyExistsError is raised.
        """
        ...

    @abstractmethod
    def list(self, prefix: str) -> list[ObjectInfo]:
        """All objects under ``prefix``, sorted by key."""
        ...

    @abstractmethod
    def list_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        """Immediate "folders" under ``prefix`` (each ending in ``delimiter``)."""
        ...

    @abstractmethod
    def copy(self, src_key: str, dst_key: str) -> ObjectInfo:
        ...

    @abstractmethod
    def delete(self, key: str, missing_ok: bool = True) -> None:
        ...

    def exists(self, key: str) -> bool:
        try:
            self.stat(key)
        except ObjectNotFoundError:
            return False
        return True

    def download_to(self, key: str, path: str | Path) -> Path:
        path = Path(path)
        path.write_bytes(self.get(key))
        return path

    def upload_from(
        self,
        path: str | Path,
        key: str,
        *,
        if_absent: bool = False,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo:
        return self.put(key, Path(path).read_bytes(), if_absent=if_absent, content_type=content_type)

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"
