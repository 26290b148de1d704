"""In-memory object store with generation tokens."""

from __future__ import annotations

import itertools
import threading

from ..errors import ObjectAlreadyExistsError, ObjectNotFoundError
from .base import ObjectInfo, ObjectStore


class InMemoryObjectStore(ObjectStore):
    """Thread-safe dict-backed store.

    Every write bumps a store-wide generation counter, mirroring how remote
    stores hand out a new version token per write.
    """

    def __init__(self, bucket: str = "memory") -> None:
        self.bucket = bucket
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()
        self._generations = itertools.count(1)

    def stat(self, key: str) -> ObjectInfo:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(key)
        data, generation = entry
        return ObjectInfo(key=key, generation=generation, size=len(data))

    def get(self, key: str) -> bytes:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(key)
        return entry[0]

    def put(self, key, data, *, if_absent=False, content_type="application/octet-stream"):
        with self._lock:
            if if_absent and key in self._objects:
                raise ObjectAlreadyExistsError(key)
            generation = str(next(self._generations))
            self._objects[key] = (bytes(data), generation)
        return ObjectInfo(key=key, generation=generation, size=len(data))

    def list(self, prefix: str) -> list[ObjectInfo]:
        with self._lock:
            items = [(k, v) for k, v in self._objects.items() if k.startswith(prefix)]
        return [
            ObjectInfo(key=k, generation=gen, size=len(data))
            for k, (data, gen) in sorted(items)
        ]

    def list_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        out = set()
        with self._lock:
            keys = [k for k in self._objects if k.startswith(prefix)]
        for key in keys:
            rest = key[len(prefix):]
            head, sep, _ = rest.partition(delimiter)
            if sep:
                out.add(prefix + head + delimiter)
        return sorted(out)

    def copy(self, src_key: str, dst_key: str) -> ObjectInfo:
        return self.put(dst_key, self.get(src_key))

    def delete(self, key: str, missing_ok: bool = True) -> None:
        with self._lock:
            if key in self._objects:
                del self._objects[key]
                return
        if not missing_ok:
            raise ObjectNotFoundError(key)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)
