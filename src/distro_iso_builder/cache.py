"""In-memory cache of packages already installed into a rootfs.

Entries are keyed by package name and stamped with a hash of the package
name, target architecture and calendar day. The hash says nothing about the
installed version: it only lets a cache entry expire at the end of the day.
"""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol


def package_hash(name: str, architecture: str, day: date) -> str:
    return hashlib.sha256(f"{name}:{architecture}:{day.isoformat()}".encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class PackageCacheEntry:
    name: str
    version: Optional[str]
    hash: str
    timestamp: datetime
    cache_path: Path


class PackageCache(Protocol):
    async def get(self, name: str) -> Optional[PackageCacheEntry]:
        ...

    async def put(self, name: str, version: Optional[str] = None) -> PackageCacheEntry:
        ...

    async def contains(self, name: str) -> bool:
        ...

    async def filter_missing(self, names: Iterable[str]) -> List[str]:
        ...

    async def clear(self) -> None:
        ...


class MemoryPackageCache:
    """Package cache shared by concurrent install batches of one builder."""

    def __init__(
        self,
        cache_dir: Path,
        architecture: str,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.architecture = architecture
        self._clock = clock
        self._entries: Dict[str, PackageCacheEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, entry: PackageCacheEntry) -> bool:
        return entry.hash == package_hash(entry.name, self.architecture, self._clock().date())

    async def get(self, name: str) -> Optional[PackageCacheEntry]:
        async with self._lock:
            entry = self._entries.get(name)
            if entry is not None and self._fresh(entry):
                return entry
            return None

    async def put(self, name: str, version: Optional[str] = None) -> PackageCacheEntry:
        now = self._clock()
        entry = PackageCacheEntry(
            name=name,
            version=version,
            hash=package_hash(name, self.architecture, now.date()),
            timestamp=now,
            cache_path=self.cache_dir / name,
        )
        async with self._lock:
            self._entries[name] = entry
        return entry

    async def contains(self, name: str) -> bool:
        return await self.get(name) is not None

    async def filter_missing(self, names: Iterable[str]) -> List[str]:
        async with self._lock:
            return [
                name
                for name in names
                if name not in self._entries or not self._fresh(self._entries[name])
            ]

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
