from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

TOP_LEVEL_KEYS: tuple[str, ...] = (
    "source",
    "ad_id",
    "url",
    "published_date",
    "updated_date",
    "timestamp",
    "days_online",
    "title",
    "description",
    "location",
    "price",
    "property",
    "features",
    "photos",
    "advertiser",
    "signals",
)
LOCATION_KEYS: tuple[str, ...] = ("district", "municipality", "parish", "lat", "lng")
PROPERTY_KEYS: tuple[str, ...] = (
    "type",
    "tipology",
    "area_total",
    "area_useful",
    "year",
    "floor",
    "condition",
)
ADVERTISER_KEYS: tuple[str, ...] = ("name", "total_ads", "is_agency", "url")
SIGNAL_KEYS: tuple[str, ...] = ("watermark", "duplicate", "professional_photos", "agency_keywords")


@dataclass(frozen=True)
class Location:
    district: str = ""
    municipality: str = ""
    parish: str = ""
    lat: str = ""
    lng: str = ""


@dataclass(frozen=True)
class PropertyDetails:
    type: str = ""
    tipology: str = ""
    area_total: str = ""
    area_useful: str = ""
    year: str = ""
    floor: str = ""
    condition: str = ""


@dataclass(frozen=True)
class Advertiser:
    name: str = ""
    total_ads: str = ""
    is_agency: bool = False
    url: str = ""


@dataclass(frozen=True)
class Signals:
    watermark: bool = False
    duplicate: bool = False
    professional_photos: bool = False
    agency_keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class Listing:
    # Declared ahead of the ``property`` field, which shadows the builtin below it.
    @property
    def fingerprint(self) -> str:
        from fsbo_pipeline.dedupe import fingerprint

        return fingerprint(self)

    source: str = ""
    ad_id: str = ""
    url: str = ""
    published_date: str = ""
    updated_date: str = ""
    timestamp: str = ""
    days_online: str = ""
    title: str = ""
    description: str = ""
    location: Location = field(default_factory=Location)
    price: str = ""
    property: PropertyDetails = field(default_factory=PropertyDetails)
    features: tuple[str, ...] = ()
    photos: tuple[str, ...] = ()
    advertiser: Advertiser = field(default_factory=Advertiser)
    signals: Signals = field(default_factory=Signals)
    # Feeds the fingerprint and the score, never serialized.
    phone: str = field(default="", repr=False)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("phone", None)
        data["features"] = list(self.features)
        data["photos"] = list(self.photos)
        data["signals"]["agency_keywords"] = list(self.signals.agency_keywords)
        return {key: data[key] for key in TOP_LEVEL_KEYS}


@dataclass(frozen=True)
class ScoreResult:
    score: int
    reasons: tuple[str, ...]
