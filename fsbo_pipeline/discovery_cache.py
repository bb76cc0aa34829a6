from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from fsbo_pipeline.models import Listing
from fsbo_pipeline.normalizer import parse_datetime

LOGGER = logging.getLogger(__name__)


def empty_state() -> dict[str, Any]:
    return {"lastRun": None, "ads": {}}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheRepository(Protocol):
    def load(self, platform: str) -> dict[str, Any]: ...

    def save(self, platform: str, state: dict[str, Any]) -> bool: ...


class JsonCacheRepository:
    """One pretty-printed JSON file per platform under ``cache_dir``."""

    def __init__(self, cache_dir: str) -> None:
        self.cache_dir = cache_dir

    def path_for(self, platform: str) -> str:
        return os.path.join(self.cache_dir, f"{platform}_cache.json")

    def load(self, platform: str) -> dict[str, Any]:
        path = self.path_for(platform)
        if not os.path.exists(path):
            return empty_state()

        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Discovery cache %s unreadable, starting empty: %s", path, exc)
            return empty_state()

        return _coerce_state(data, path)

    def save(self, platform: str, state: dict[str, Any]) -> bool:
        path = self.path_for(platform)
        tmp_path = None
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{platform}_cache.", suffix=".tmp", dir=self.cache_dir
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(state, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            return True
        except OSError as exc:
            LOGGER.error("Failed to save discovery cache %s: %s", path, exc)
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False


class InMemoryCacheRepository:
    def __init__(self) -> None:
        self._states: dict[str, dict[str, Any]] = {}

    def load(self, platform: str) -> dict[str, Any]:
        state = self._states.get(platform)
        if state is None:
            return empty_state()
        return json.loads(json.dumps(state))

    def save(self, platform: str, state: dict[str, Any]) -> bool:
        self._states[platform] = json.loads(json.dumps(state))
        return True


@dataclass
class CacheUpdate:
    new_items: list[Listing] = field(default_factory=list)

    @property
    def total_new(self) -> int:
        return len(self.new_items)


class DiscoveryCache:
    # Single writer per platform: the lock only serialises callers sharing this instance.
    def __init__(
        self,
        platform: str,
        repository: CacheRepository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.platform = platform
        self.repository = repository
        self.clock = clock
        self._lock = threading.Lock()

    def update(self, listings: Iterable[Listing]) -> CacheUpdate:
        with self._lock:
            state = self.repository.load(self.platform)
            ads = state["ads"]
            now = self.clock()
            now_iso = now.isoformat()
            result = CacheUpdate()
            skipped = 0

            for listing in listings:
                ad_id = listing.ad_id
                if not ad_id:
                    skipped += 1
                    continue

                entry = ads.get(ad_id)
                if entry is None:
                    ads[ad_id] = {"url": listing.url, "first_seen": now_iso, "last_seen": now_iso}
                    result.new_items.append(listing)
                    continue

                previous = parse_datetime(entry.get("last_seen"))
                if previous is None or previous < now:
                    entry["last_seen"] = now_iso
                if listing.url:
                    entry["url"] = listing.url
                entry.setdefault("first_seen", now_iso)

            if skipped:
                LOGGER.info("[%s] Skipped %s listing(s) without ad_id", self.platform, skipped)

            state["lastRun"] = now_iso
            self.repository.save(self.platform, state)

        LOGGER.info("[%s] Discovery cache: %s new listing(s)", self.platform, result.total_new)
        return result

    def filter_new(self, listings: Iterable[Listing]) -> list[Listing]:
        ads = self.repository.load(self.platform)["ads"]
        return [listing for listing in listings if listing.ad_id and listing.ad_id not in ads]

    def clean_old(self, days_to_keep: int = 30) -> int:
        with self._lock:
            state = self.repository.load(self.platform)
            cutoff = self.clock() - timedelta(days=days_to_keep)
            stale = []
            for ad_id, entry in state["ads"].items():
                last_seen = parse_datetime(entry.get("last_seen"))
                if last_seen is not None and last_seen < cutoff:
                    stale.append(ad_id)
            for ad_id in stale:
                del state["ads"][ad_id]

            if stale:
                self.repository.save(self.platform, state)
                LOGGER.info("[%s] Removed %s stale entr(ies) from discovery cache", self.platform, len(stale))
        return len(stale)


def _coerce_state(data: Any, origin: str) -> dict[str, Any]:
    if not isinstance(data, dict) or not isinstance(data.get("ads"), dict):
        LOGGER.warning("Discovery cache %s has an unexpected shape, starting empty", origin)
        return empty_state()

    ads = {
        str(ad_id): dict(entry)
        for ad_id, entry in data["ads"].items()
        if isinstance(entry, dict)
    }
    last_run = data.get("lastRun")
    return {"lastRun": last_run if isinstance(last_run, str) else None, "ads": ads}
