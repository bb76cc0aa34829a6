from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def raw_ad():
    def _make(**overrides):
        data = {
            "source": "olx",
            "ad_id": "A1",
            "url": "https://www.olx.pt/d/anuncio/a1",
            "title": "Apartamento T2 em Benfica",
            "description": "Vendo apartamento T2 com varanda.",
            "price": "250.000 €",
            "location": {"district": "Lisboa", "municipality": "Lisboa", "parish": "Benfica"},
            "property": {"type": "apartamento", "tipology": "T2", "area_useful": "85 m²"},
            "features": ["Varanda"],
            "photos": ["https://img.olx.pt/1.jpg", "https://img.olx.pt/2.jpg"],
            "advertiser": {"name": "Ana", "total_ads": "1", "is_agency": False},
            "signals": {"agency_keywords": []},
        }
        data.update(overrides)
        return data

    return _make
