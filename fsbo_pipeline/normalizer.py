from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from fsbo_pipeline.models import (
    ADVERTISER_KEYS,
    LOCATION_KEYS,
    PROPERTY_KEYS,
    SIGNAL_KEYS,
    TOP_LEVEL_KEYS,
    Advertiser,
    Listing,
    Location,
    PropertyDetails,
    Signals,
)

LOGGER = logging.getLogger(__name__)

TRUE_STRINGS = frozenset({"true", "1", "yes"})
NUMERIC_CHARS_REGEX = re.compile(r"[^\d.,]")
DOT_THOUSANDS_REGEX = re.compile(r"\d{1,3}\.\d{3}")


def normalize_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    try:
        return str(value).strip()
    except (TypeError, ValueError):
        return ""


def normalize_number(value: Any) -> str:
    # "250.000 €" -> "250000", "85,5 m²" -> "85.5"
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return ""
        return _format_decimal(number)
    if not isinstance(value, str):
        return ""

    parsed = _parse_decimal(value)
    return "" if parsed is None else _format_decimal(parsed)


def normalize_boolean(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def normalize_array(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        return [value]
    return [item for item in value if item is not None]


def normalize(raw: Any) -> Listing:
    if isinstance(raw, Listing):
        data = raw.to_dict()
        data["phone"] = raw.phone
    elif isinstance(raw, Mapping):
        data = raw
    else:
        LOGGER.debug("Non-mapping raw record of type %s treated as empty", type(raw).__name__)
        data = {}

    published_date = normalize_string(data.get("published_date"))
    timestamp = normalize_string(data.get("timestamp")) or _now_iso()
    days_online = normalize_number(data.get("days_online"))
    if not days_online:
        days_online = calculate_days_online(published_date, timestamp)

    return Listing(
        source=normalize_string(data.get("source")),
        ad_id=normalize_string(data.get("ad_id")),
        url=normalize_string(data.get("url")),
        published_date=published_date,
        updated_date=normalize_string(data.get("updated_date")),
        timestamp=timestamp,
        days_online=days_online,
        title=normalize_string(data.get("title")),
        description=normalize_string(data.get("description")),
        location=_normalize_location(data.get("location")),
        price=normalize_number(data.get("price")),
        property=_normalize_property(data.get("property")),
        features=tuple(normalize_string(item) for item in normalize_array(data.get("features"))),
        photos=tuple(normalize_string(item) for item in normalize_array(data.get("photos"))),
        advertiser=_normalize_advertiser(data.get("advertiser")),
        signals=_normalize_signals(data.get("signals")),
        phone=extract_phone(data),
    )


def calculate_days_online(published_date: str, reference: str) -> str:
    published = parse_datetime(published_date)
    now = parse_datetime(reference)
    if published is None or now is None:
        return ""
    return str(max(0, (now - published).days))


def parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_phone(data: Mapping[str, Any]) -> str:
    advertiser = data.get("advertiser")
    if isinstance(advertiser, Mapping):
        phone = normalize_string(advertiser.get("phone"))
        if phone:
            return phone
    return normalize_string(data.get("phone"))


def validate_schema(data: Any) -> list[str]:
    """List every way a serialized listing departs from the canonical schema."""
    if not isinstance(data, Mapping):
        return ["listing must be an object"]

    errors = [f"missing field: {key}" for key in TOP_LEVEL_KEYS if key not in data]
    errors.extend(f"extra field not allowed: {key}" for key in data if key not in TOP_LEVEL_KEYS)

    for key in ("features", "photos"):
        if key in data and not isinstance(data[key], list):
            errors.append(f"{key} must be an array")

    nested = (
        ("location", LOCATION_KEYS),
        ("property", PROPERTY_KEYS),
        ("advertiser", ADVERTISER_KEYS),
        ("signals", SIGNAL_KEYS),
    )
    for name, keys in nested:
        if name not in data:
            continue
        value = data[name]
        if not isinstance(value, Mapping):
            errors.append(f"{name} must be an object")
            continue
        errors.extend(f"{name}.{key} missing" for key in keys if key not in value)

    advertiser = data.get("advertiser")
    if isinstance(advertiser, Mapping) and not isinstance(advertiser.get("is_agency"), bool):
        errors.append("advertiser.is_agency must be a boolean")

    signals = data.get("signals")
    if isinstance(signals, Mapping):
        for key in ("watermark", "duplicate", "professional_photos"):
            if not isinstance(signals.get(key), bool):
                errors.append(f"signals.{key} must be a boolean")
        if not isinstance(signals.get("agency_keywords"), list):
            errors.append("signals.agency_keywords must be an array")
        if "is_agency" in signals:
            errors.append("signals.is_agency not allowed (lives on advertiser.is_agency)")

    for key, value in data.items():
        if value is None:
            errors.append(f"{key} must not be null")

    return errors


def _normalize_location(value: Any) -> Location:
    if not isinstance(value, Mapping):
        return Location()
    return Location(**{key: normalize_string(value.get(key)) for key in LOCATION_KEYS})


def _normalize_property(value: Any) -> PropertyDetails:
    if not isinstance(value, Mapping):
        return PropertyDetails()
    return PropertyDetails(
        type=normalize_string(value.get("type")),
        tipology=normalize_string(value.get("tipology")),
        area_total=normalize_number(value.get("area_total")),
        area_useful=normalize_number(value.get("area_useful")),
        year=normalize_number(value.get("year")),
        floor=normalize_string(value.get("floor")),
        condition=normalize_string(value.get("condition")),
    )


def _normalize_advertiser(value: Any) -> Advertiser:
    if not isinstance(value, Mapping):
        return Advertiser()
    return Advertiser(
        name=normalize_string(value.get("name")),
        total_ads=normalize_number(value.get("total_ads")),
        is_agency=normalize_boolean(value.get("is_agency")),
        url=normalize_string(value.get("url")),
    )


def _normalize_signals(value: Any) -> Signals:
    # ``is_agency`` is never read here: advertiser.is_agency is the only source.
    if not isinstance(value, Mapping):
        return Signals()

    keywords = (normalize_string(item) for item in normalize_array(value.get("agency_keywords")))
    return Signals(
        watermark=normalize_boolean(value.get("watermark")),
        duplicate=normalize_boolean(value.get("duplicate")),
        professional_photos=normalize_boolean(value.get("professional_photos")),
        agency_keywords=tuple(dict.fromkeys(keyword for keyword in keywords if keyword)),
    )


def _parse_decimal(text: str) -> float | None:
    negative = text.strip().startswith("-")
    cleaned = NUMERIC_CHARS_REGEX.sub("", text)
    if not any(char.isdigit() for char in cleaned):
        return None

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", "") if cleaned.count(",") > 1 else cleaned.replace(",", ".")
    elif cleaned.count(".") > 1 or DOT_THOUSANDS_REGEX.fullmatch(cleaned):
        cleaned = cleaned.replace(".", "")

    try:
        value = float(cleaned)
    except ValueError:
        return None
    return -value if negative else value


def _format_decimal(value: float) -> str:
    if not math.isfinite(value):
        return ""
    value = round(value, 2)
    if value.is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0")


def _format_float(value: float) -> str:
    if not math.isfinite(value):
        return ""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
