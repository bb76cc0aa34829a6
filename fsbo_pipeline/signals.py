from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import replace
from typing import Any, Iterable

from fsbo_pipeline.models import Listing
from fsbo_pipeline.normalizer import normalize_number

LOGGER = logging.getLogger(__name__)

TEXT_AGENCY_KEYWORDS = (
    "remax",
    "era",
    "century",
    "century 21",
    "c21",
    "kw",
    "keller williams",
    "imobiliária",
    "imóveis",
    "mediador",
    "mediadora",
    "consultor",
    "consultora",
    "angariador",
    "angariadora",
    "properties",
    "real estate",
    "ami",
    "coldwell banker",
    "sotheby",
    "engel & völkers",
    "private broker",
    "gestão de imóveis",
    "investimento imobiliário",
    "broker",
    "realty",
    "home",
    "homes",
    "ltd",
    "lda",
    "s.a.",
    "sociedade",
    "empresa",
    "group",
    "grupo",
    "investimentos",
    "investment",
    "gestão",
    "management",
    "consultoria",
    "consulting",
)
NAME_AGENCY_KEYWORDS = (
    "remax",
    "century",
    "era",
    "exp",
    "properties",
    "real estate",
    "imobiliária",
    "mediador",
    "mediadora",
    "consultor",
    "consultora",
    "broker",
    "realty",
    "home",
    "homes",
    "sotheby",
    "coldwell",
    "banker",
    "keller",
    "williams",
    "kw",
    "ltd",
    "lda",
    "s.a.",
    "sociedade",
    "empresa",
    "group",
    "grupo",
    "investimentos",
    "investment",
    "gestão",
    "management",
    "consultoria",
    "consulting",
)
NEGATION_WORDS = (
    "não",
    "nunca",
    "sem",
    "evitar",
    "dispenso",
    "dispensamos",
    "recuso",
    "recusamos",
    "excluir",
    "excluímos",
)
NEGATION_WINDOW = 50
AGENCY_ADS_THRESHOLD = 5
AGENCY_URL_MARKERS = ("/empresas/", "/agencias-imobiliarias/", "/agencias/")
NON_PHOTO_MARKERS = ("logo", "icon", "footer", "header", "app_store", "google_play")
WATERMARK_MARKERS = ("watermark", "wm_", "marca", "agency", "brand", "signature", "branded")
HIGH_RES_REGEX = re.compile(r"2000x1500|4032x3024|3024x4032|1920x1080|1280x1024", re.IGNORECASE)
PROFESSIONAL_PHOTO_PHRASES = (
    "fotos profissionais",
    "fotografia hdr",
    "reportagem fotografica",
    "fotografia profissional",
)
PUNCTUATION_REGEX = re.compile(r"[^\w\s]")
WHITESPACE_REGEX = re.compile(r"\s+")


def normalize_text(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return WHITESPACE_REGEX.sub(" ", PUNCTUATION_REGEX.sub(" ", stripped)).strip()


def _compile_keywords(keywords: Iterable[str]) -> dict[str, re.Pattern[str]]:
    patterns = {}
    for keyword in keywords:
        normalized = normalize_text(keyword)
        if normalized and normalized not in patterns:
            patterns[normalized] = re.compile(rf"\b{re.escape(normalized)}\b")
    return patterns


TEXT_KEYWORD_PATTERNS = _compile_keywords(TEXT_AGENCY_KEYWORDS)
NAME_KEYWORD_PATTERNS = _compile_keywords(NAME_AGENCY_KEYWORDS)
NEGATION_REGEX = re.compile(
    r"\b(?:" + "|".join(re.escape(normalize_text(word)) for word in NEGATION_WORDS) + r")\b"
)


def detect_agency_keywords(text: Any) -> list[str]:
    # "não aceitamos imobiliárias" names an agency word without being an agency ad.
    normalized = normalize_text(text)
    found = []
    for keyword, pattern in TEXT_KEYWORD_PATTERNS.items():
        for match in pattern.finditer(normalized):
            before = normalized[max(0, match.start() - NEGATION_WINDOW):match.start()]
            after = normalized[match.end():match.end() + NEGATION_WINDOW]
            if not NEGATION_REGEX.search(f"{before} {after}"):
                found.append(keyword)
                break
    return found


def detect_agency_by_name(name: Any) -> bool:
    normalized = normalize_text(name)
    return any(pattern.search(normalized) for pattern in NAME_KEYWORD_PATTERNS.values())


def detect_agency_by_ads_count(total_ads: Any) -> bool:
    value = normalize_number(total_ads)
    return bool(value) and float(value) >= AGENCY_ADS_THRESHOLD


def detect_agency_by_url(url: Any, platform: str = "") -> bool:
    if platform != "imovirtual" or not isinstance(url, str):
        return False
    lowered = url.lower()
    return any(marker in lowered for marker in AGENCY_URL_MARKERS)


def _real_photos(photos: Iterable[Any]) -> list[str]:
    return [
        url
        for url in photos
        if isinstance(url, str) and url and not any(marker in url.lower() for marker in NON_PHOTO_MARKERS)
    ]


def detect_watermark(photos: Iterable[Any]) -> bool:
    return any(
        marker in url.lower() for url in _real_photos(photos or ()) for marker in WATERMARK_MARKERS
    )


def professional_photos_score(photos: Iterable[Any], description: Any = "") -> int:
    real = _real_photos(photos or ())
    if not real:
        return 0

    score = 0
    if len(real) >= 12:
        score += 2
    elif len(real) >= 8:
        score += 1
    elif len(real) <= 5:
        score -= 1

    high_res = sum(1 for url in real if HIGH_RES_REGEX.search(url))
    if high_res / len(real) > 0.5:
        score += 1

    text = normalize_text(description)
    if any(phrase in text for phrase in PROFESSIONAL_PHOTO_PHRASES):
        score += 2
    return score


def detect_professional_photos(photos: Iterable[Any], description: Any = "") -> bool:
    return professional_photos_score(photos, description) >= 2


def derive_signals(listing: Listing, platform: str = "") -> Listing:
    # Flags are only raised, never cleared; detected keywords follow the collector's own.
    text = " ".join(part for part in (listing.title, listing.description, listing.advertiser.name) if part)
    keywords = tuple(dict.fromkeys(listing.signals.agency_keywords + tuple(detect_agency_keywords(text))))
    signals = replace(
        listing.signals,
        watermark=listing.signals.watermark or detect_watermark(listing.photos),
        professional_photos=listing.signals.professional_photos
        or detect_professional_photos(listing.photos, listing.description),
        agency_keywords=keywords,
    )

    by_name = detect_agency_by_name(listing.advertiser.name)
    by_ads = detect_agency_by_ads_count(listing.advertiser.total_ads)
    by_url = detect_agency_by_url(listing.advertiser.url, platform or listing.source)
    advertiser = replace(
        listing.advertiser,
        is_agency=listing.advertiser.is_agency or by_name or by_ads or by_url,
    )
    if advertiser.is_agency and not listing.advertiser.is_agency:
        LOGGER.debug(
            "Ad %s flagged as agency (name=%s ads=%s url=%s)", listing.ad_id, by_name, by_ads, by_url
        )

    return replace(listing, signals=signals, advertiser=advertiser)
