from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable, Union

from fsbo_pipeline.dedupe import fingerprint
from fsbo_pipeline.models import Listing, ScoreResult

BASE_SCORE = 50
FALLBACK_REASON = "base score calculated"
GENERIC_ADVERTISER_NAMES = frozenset({"particular"})
AGENCY_NAME_KEYWORDS = (
    "remax",
    "era",
    "century",
    "kw",
    "imobiliária",
    "imobiliaria",
    "properties",
    "real estate",
    "ami",
    "consultor",
    "gestor",
    "mediador",
)


@dataclass(frozen=True)
class ScoreFacts:
    advertiser_name: str
    agency_name: bool
    total_ads: int
    agency_keyword_count: int
    professional_photos: bool
    has_phone: bool
    photo_count: int
    description_length: int
    watermark: bool
    duplicate: bool
    is_agency: bool | None


@dataclass(frozen=True)
class Rule:
    predicate: Callable[[ScoreFacts], bool]
    delta: Union[int, Callable[[ScoreFacts], int]]
    reason: str

    def apply(self, facts: ScoreFacts) -> tuple[int, str]:
        delta = self.delta(facts) if callable(self.delta) else self.delta
        return delta, self.reason.format(**asdict(facts))


RULES: tuple[tuple[Rule, ...], ...] = (
    (
        Rule(lambda f: f.agency_name, -30, "advertiser name contains agency keywords"),
        Rule(
            lambda f: bool(f.advertiser_name) and f.advertiser_name not in GENERIC_ADVERTISER_NAMES,
            5,
            "advertiser name does not look like an agency",
        ),
    ),
    (
        Rule(lambda f: f.total_ads >= 20, -25, "advertiser has {total_ads} ads (likely agency)"),
        Rule(lambda f: f.total_ads >= 5, -15, "advertiser has {total_ads} ads (possible agency)"),
        Rule(lambda f: f.total_ads == 0, 10, "advertiser has no history of multiple ads"),
    ),
    (
        Rule(
            lambda f: f.agency_keyword_count > 0,
            lambda f: -10 * f.agency_keyword_count,
            "found {agency_keyword_count} agency keyword(s) in text",
        ),
    ),
    (
        Rule(lambda f: f.professional_photos, -15, "professional photos detected (possible agency)"),
        Rule(lambda f: True, 5, "photos do not look professional"),
    ),
    (
        Rule(lambda f: f.has_phone, 15, "phone available (good FSBO signal)"),
        Rule(lambda f: True, -5, "phone not available"),
    ),
    (
        Rule(lambda f: f.photo_count == 0, -10, "no photos"),
        Rule(lambda f: 1 <= f.photo_count <= 8, 10, "{photo_count} photos (typical FSBO)"),
        Rule(lambda f: f.photo_count > 20, -10, "{photo_count} photos (many, possible agency)"),
    ),
    (
        Rule(lambda f: f.description_length == 0, -10, "no description"),
        Rule(lambda f: 200 <= f.description_length <= 1000, 5, "description has a reasonable length"),
        Rule(lambda f: f.description_length > 2000, -5, "description very long (possible agency)"),
    ),
    (Rule(lambda f: f.watermark, -20, "watermark detected in photos"),),
    (Rule(lambda f: f.duplicate, -10, "duplicate listing detected"),),
    (
        Rule(lambda f: f.is_agency is True, -40, "advertiser flagged as agency"),
        Rule(lambda f: f.is_agency is False, 10, "advertiser confirmed as private"),
    ),
)


def score_listing(listing: Listing | Mapping[str, Any]) -> ScoreResult:
    """Score a ``Listing`` or its serialized form (``Listing.to_dict()``)."""
    facts = collect_facts(listing)
    score = BASE_SCORE
    reasons = []
    for group in RULES:
        for rule in group:
            if rule.predicate(facts):
                delta, reason = rule.apply(facts)
                score += delta
                reasons.append(reason)
                break

    score = max(0, min(100, round(score)))
    return ScoreResult(score=score, reasons=tuple(reasons) or (FALLBACK_REASON,))


def score_listings(listings: Iterable[Listing], min_combo_signals: int = 1) -> list[dict[str, Any]]:
    output = []
    for listing in listings:
        result = score_listing(listing)
        item = listing.to_dict()
        item["_fingerprint"] = fingerprint(listing, min_combo_signals=min_combo_signals)
        item["_fsbo_score"] = result.score
        item["_fsbo_reasons"] = list(result.reasons)
        output.append(item)
    return output


def collect_facts(listing: Listing | Mapping[str, Any]) -> ScoreFacts:
    name = str(_lookup(listing, "advertiser", "name") or "").strip().lower()
    is_agency = _lookup(listing, "advertiser", "is_agency")
    phone = _lookup(listing, "phone") or _lookup(listing, "advertiser", "phone")
    return ScoreFacts(
        advertiser_name=name,
        agency_name=any(keyword in name for keyword in AGENCY_NAME_KEYWORDS),
        total_ads=_to_int(_lookup(listing, "advertiser", "total_ads")),
        agency_keyword_count=len(_lookup(listing, "signals", "agency_keywords") or ()),
        professional_photos=_lookup(listing, "signals", "professional_photos") is True,
        has_phone=bool(str(phone or "").strip()),
        photo_count=len(_lookup(listing, "photos") or ()),
        description_length=len(str(_lookup(listing, "description") or "")),
        watermark=_lookup(listing, "signals", "watermark") is True,
        duplicate=_lookup(listing, "signals", "duplicate") is True,
        is_agency=is_agency if isinstance(is_agency, bool) else None,
    )


def _lookup(obj: Any, *path: str) -> Any:
    for key in path:
        if obj is None:
            return None
        if isinstance(obj, Mapping):
            obj = obj.get(key)
        else:
            obj = getattr(obj, key, None)
    return obj


def _to_int(value: Any) -> int:
    # Unknown counts score like an advertiser with no other ads.
    if isinstance(value, bool) or value is None:
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
