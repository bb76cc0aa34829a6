from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

LOGGER = logging.getLogger(__name__)

LIST_KEYS = ("items", "all_ads", "new_ads")
LOBSTR_SOURCE = "idealista_lobstr"


def extract_raw_records(payload: Any) -> list[Any]:
    # A single ad, a list of ads, or an envelope with items / all_ads / new_ads.
    if payload is None:
        return []
    if isinstance(payload, list):
        return [item for item in payload if item is not None]
    if isinstance(payload, Mapping):
        for key in LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if item is not None]
        return [payload]
    LOGGER.warning("Ignoring collector payload of type %s", type(payload).__name__)
    return []


def bedrooms_to_tipology(bedrooms: Any) -> str | None:
    if bedrooms is None or isinstance(bedrooms, bool):
        return None
    try:
        count = int(float(str(bedrooms).strip()))
    except (ValueError, OverflowError):
        return None
    if count < 0:
        return None
    return "T5+" if count >= 5 else f"T{count}"


def lobstr_result_to_raw(result: Mapping[str, Any]) -> dict[str, Any]:
    """Map one Lobstr Idealista result onto the raw record shape."""
    timestamp = _parse_timestamp(result.get("scraping_time"))
    area = result.get("area")
    main_image = result.get("main_image")

    return {
        "source": LOBSTR_SOURCE,
        "ad_id": result.get("native_id") or result.get("id"),
        "url": result.get("url"),
        "published_date": timestamp,
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "title": result.get("title"),
        "description": result.get("description"),
        "price": result.get("price"),
        "property": {
            "tipology": bedrooms_to_tipology(result.get("bedrooms")),
            "area_total": area,
            "area_useful": area,
            "floor": result.get("floor"),
        },
        "photos": [main_image] if main_image else [],
        "advertiser": {"phone": result.get("phone")},
    }


def _parse_timestamp(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()
