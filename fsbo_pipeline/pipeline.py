from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from fsbo_pipeline.collectors import extract_raw_records, lobstr_result_to_raw
from fsbo_pipeline.config import SUPPORTED_PLATFORMS, Settings, require_lobstr_api_key
from fsbo_pipeline.dedupe import dedupe
from fsbo_pipeline.discovery_cache import CacheRepository, DiscoveryCache, JsonCacheRepository
from fsbo_pipeline.errors import (
    RemoteError,
    RemoteJobCancelled,
    RemoteJobTimeout,
    UnsupportedPlatformError,
)
from fsbo_pipeline.lobstr_client import LobstrClient
from fsbo_pipeline.models import Listing
from fsbo_pipeline.normalizer import normalize
from fsbo_pipeline.orchestrator import RemoteJobOrchestrator
from fsbo_pipeline.scoring import score_listings
from fsbo_pipeline.signals import derive_signals

LOGGER = logging.getLogger(__name__)

REMOTE_PLATFORM = "idealista"


class PipelineService:
    def __init__(
        self,
        settings: Settings,
        repository: CacheRepository | None = None,
        orchestrator: RemoteJobOrchestrator | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository if repository is not None else JsonCacheRepository(settings.cache_dir)
        self._orchestrator = orchestrator
        self._caches: dict[str, DiscoveryCache] = {}

    def cache_for(self, platform: str) -> DiscoveryCache:
        _validate_platform(platform)
        if platform not in self._caches:
            self._caches[platform] = DiscoveryCache(platform, self.repository)
        return self._caches[platform]

    def process(self, platform: str, payload: Any, only_new: bool = False) -> dict[str, Any]:
        _validate_platform(platform)
        started = time.monotonic()

        listings: list[Listing] = []
        for index, raw in enumerate(extract_raw_records(payload)):
            try:
                listing = normalize(raw)
                if self.settings.derive_signals:
                    listing = derive_signals(listing, platform)
                listings.append(listing)
            except Exception:
                LOGGER.exception("[%s] Skipping raw record #%s that failed to normalize", platform, index)
        LOGGER.info("[%s] Normalized %s listing(s)", platform, len(listings))

        deduped = dedupe(listings, min_combo_signals=self.settings.fingerprint_min_combo_signals)
        cache_update = self.cache_for(platform).update(deduped.unique)
        selected = cache_update.new_items if only_new else deduped.unique
        if only_new:
            LOGGER.info("[%s] Keeping %s new listing(s) out of %s", platform, len(selected), len(deduped.unique))

        results = score_listings(selected, min_combo_signals=self.settings.fingerprint_min_combo_signals)
        return {
            "success": True,
            "platform": platform,
            "timestamp": _now_iso(),
            "duration_ms": int((time.monotonic() - started) * 1000),
            "results": results,
            "count": len(results),
            "meta": {
                "total_results": len(results),
                "duplicates_removed": len(deduped.duplicates),
                "new_results": cache_update.total_new,
            },
        }

    async def run_remote(
        self,
        search_url: str | None = None,
        max_results: int | None = None,
        only_new: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        orchestrator = self._orchestrator or self._build_orchestrator()
        results = await orchestrator.run(
            search_url=search_url, max_results=max_results, cancel_event=cancel_event
        )
        LOGGER.info("Remote job returned %s result(s)", len(results))
        raw_records = [lobstr_result_to_raw(result) for result in results]
        return self.process(REMOTE_PLATFORM, raw_records, only_new=only_new)

    def clean_cache(self, platform: str, days_to_keep: int | None = None) -> int:
        days = days_to_keep if days_to_keep is not None else self.settings.cache_retention_days
        return self.cache_for(platform).clean_old(days)

    def _build_orchestrator(self) -> RemoteJobOrchestrator:
        client = LobstrClient(
            api_key=require_lobstr_api_key(self.settings),
            api_base=self.settings.lobstr_api_base,
            timeout_seconds=self.settings.http_timeout_seconds,
            max_retries=self.settings.http_max_retries,
        )
        return RemoteJobOrchestrator(
            client,
            squid_id=self.settings.lobstr_squid_id,
            squid_keyword=self.settings.lobstr_squid_keyword,
            poll_interval=self.settings.lobstr_poll_interval_seconds,
            max_wait=self.settings.lobstr_max_wait_seconds,
            page_size=self.settings.lobstr_page_size,
            page_delay=self.settings.lobstr_page_delay_seconds,
            page_retries=self.settings.lobstr_page_retries,
        )


def format_error(platform: str | None, error: BaseException) -> dict[str, Any]:
    return {
        "success": False,
        "platform": platform or "unknown",
        "error_type": classify_error(error),
        "error": str(error) or error.__class__.__name__,
        "timestamp": _now_iso(),
    }


def classify_error(error: BaseException) -> str:
    if isinstance(error, UnsupportedPlatformError):
        return "UNSUPPORTED_PLATFORM"
    if isinstance(error, RemoteJobTimeout):
        return "TIMEOUT"
    if isinstance(error, RemoteJobCancelled):
        return "CANCELLED"
    if isinstance(error, RemoteError):
        return "REMOTE_FAILURE"
    if isinstance(error, ValueError):
        return "VALIDATION_ERROR"
    return "FATAL"


def _validate_platform(platform: str) -> None:
    if platform not in SUPPORTED_PLATFORMS:
        raise UnsupportedPlatformError(
            f"Unsupported platform {platform!r}; expected one of: {', '.join(SUPPORTED_PLATFORMS)}"
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
