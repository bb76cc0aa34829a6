from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from fsbo_pipeline.models import Listing

LOGGER = logging.getLogger(__name__)

WHITESPACE_REGEX = re.compile(r"\s+")


@dataclass
class DedupeResult:
    unique: list[Listing] = field(default_factory=list)
    duplicates: list[Listing] = field(default_factory=list)


def fingerprint(listing: Listing, min_combo_signals: int = 1) -> str:
    # Evidence in order: url, platform id, phone, then the price/tipology/area/location combo.
    parts = []

    if listing.url:
        parts.append(f"url:{listing.url}")

    if listing.ad_id and listing.source:
        parts.append(f"id:{listing.source}:{listing.ad_id}")

    phone = WHITESPACE_REGEX.sub("", listing.phone or "")
    if phone:
        parts.append(f"phone:{phone}")

    price = listing.price.strip()
    tipology = listing.property.tipology.strip()
    area = (listing.property.area_useful or listing.property.area_total).strip()
    location = "|".join(
        part
        for part in (
            listing.location.district,
            listing.location.municipality,
            listing.location.parish,
        )
        if part
    )
    filled = sum(1 for part in (price, tipology, area, location) if part)
    if filled and filled >= min_combo_signals:
        parts.append(f"combo:{price}|{tipology}|{area}|{location}")

    base = "||".join(parts)
    if not base:
        base = f"{listing.title}|{listing.price}"
    return hashlib.md5(base.encode("utf-8")).hexdigest()


def dedupe(listings: Iterable[Listing], min_combo_signals: int = 1) -> DedupeResult:
    result = DedupeResult()
    seen: set[str] = set()
    for listing in listings:
        value = fingerprint(listing, min_combo_signals=min_combo_signals)
        if value in seen:
            result.duplicates.append(listing)
            continue
        seen.add(value)
        result.unique.append(listing)

    if result.duplicates:
        LOGGER.info("Removed %s duplicate listing(s)", len(result.duplicates))
    return result


def is_duplicate(listing: Listing, existing: Iterable[Listing], min_combo_signals: int = 1) -> bool:
    value = fingerprint(listing, min_combo_signals=min_combo_signals)
    return any(
        fingerprint(item, min_combo_signals=min_combo_signals) == value for item in existing
    )
