import json

from fsbo_pipeline.discovery_cache import (
    DiscoveryCache,
    InMemoryCacheRepository,
    JsonCacheRepository,
    empty_state,
)
from fsbo_pipeline.normalizer import normalize


def _listings(*ids):
    return [normalize({"source": "olx", "ad_id": ad_id, "url": f"https://x/{ad_id}"}) for ad_id in ids]


def test_new_then_seen_then_mixed(tmp_path, clock):
    cache = DiscoveryCache("olx", JsonCacheRepository(str(tmp_path)), clock=clock)

    assert cache.update(_listings("x1", "x2")).total_new == 2
    assert cache.update(_listings("x1", "x2")).total_new == 0

    mixed = cache.update(_listings("x1", "x3"))
    assert mixed.total_new == 1
    assert [listing.ad_id for listing in mixed.new_items] == ["x3"]


def test_first_seen_is_write_once_and_last_seen_moves_forward(tmp_path, clock):
    repository = JsonCacheRepository(str(tmp_path))
    cache = DiscoveryCache("olx", repository, clock=clock)
    first_run = clock().isoformat()

    cache.update(_listings("x1"))
    clock.advance(days=2)
    cache.update(_listings("x1"))

    entry = repository.load("olx")["ads"]["x1"]
    assert entry["first_seen"] == first_run
    assert entry["last_seen"] == clock().isoformat()
    assert entry["url"] == "https://x/x1"


def test_last_seen_never_moves_backwards(clock):
    repository = InMemoryCacheRepository()
    cache = DiscoveryCache("olx", repository, clock=clock)
    cache.update(_listings("x1"))
    latest = clock().isoformat()

    clock.advance(hours=-5)
    cache.update(_listings("x1"))

    assert repository.load("olx")["ads"]["x1"]["last_seen"] == latest


def test_listings_without_id_are_skipped(clock):
    repository = InMemoryCacheRepository()
    cache = DiscoveryCache("olx", repository, clock=clock)

    result = cache.update([normalize({"url": "https://x/no-id"})] + _listings("x1"))

    assert result.total_new == 1
    assert list(repository.load("olx")["ads"]) == ["x1"]


def test_entries_missing_from_batch_are_kept(clock):
    repository = InMemoryCacheRepository()
    cache = DiscoveryCache("olx", repository, clock=clock)

    cache.update(_listings("x1"))
    cache.update(_listings("x2"))

    assert set(repository.load("olx")["ads"]) == {"x1", "x2"}


def test_store_file_format(tmp_path, clock):
    repository = JsonCacheRepository(str(tmp_path))
    DiscoveryCache("casasapo", repository, clock=clock).update(_listings("x1"))

    path = tmp_path / "casasapo_cache.json"
    text = path.read_text(encoding="utf-8")
    data = json.loads(text)

    assert data["lastRun"] == clock().isoformat()
    assert set(data["ads"]["x1"]) == {"url", "first_seen", "last_seen"}
    assert '\n  "ads"' in text
    assert [item.name for item in tmp_path.iterdir()] == ["casasapo_cache.json"]


def test_corrupt_or_misshapen_file_loads_empty(tmp_path, clock):
    (tmp_path / "olx_cache.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "idealista_cache.json").write_text('{"ads": []}', encoding="utf-8")
    repository = JsonCacheRepository(str(tmp_path))

    assert repository.load("olx") == empty_state()
    assert repository.load("idealista") == empty_state()
    assert repository.load("custojusto") == empty_state()
    assert DiscoveryCache("olx", repository, clock=clock).update(_listings("x1")).total_new == 1


def test_save_failure_is_not_fatal(tmp_path, clock):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    repository = JsonCacheRepository(str(blocker))
    cache = DiscoveryCache("olx", repository, clock=clock)

    assert repository.save("olx", empty_state()) is False
    assert cache.update(_listings("x1")).total_new == 1
    assert cache.update(_listings("x1")).total_new == 1


def test_filter_new_is_read_only(tmp_path, clock):
    repository = JsonCacheRepository(str(tmp_path))
    cache = DiscoveryCache("olx", repository, clock=clock)
    cache.update(_listings("x1"))

    fresh = cache.filter_new(_listings("x1", "x2") + [normalize({})])

    assert [listing.ad_id for listing in fresh] == ["x2"]
    assert "x2" not in repository.load("olx")["ads"]


def test_clean_old_removes_stale_entries(clock):
    repository = InMemoryCacheRepository()
    cache = DiscoveryCache("olx", repository, clock=clock)
    cache.update(_listings("old"))
    clock.advance(days=40)
    cache.update(_listings("recent"))

    assert cache.clean_old(days_to_keep=30) == 1
    assert list(repository.load("olx")["ads"]) == ["recent"]
    assert cache.clean_old(days_to_keep=30) == 0


def test_platforms_use_disjoint_stores(tmp_path, clock):
    repository = JsonCacheRepository(str(tmp_path))
    DiscoveryCache("olx", repository, clock=clock).update(_listings("x1"))

    assert DiscoveryCache("imovirtual", repository, clock=clock).update(_listings("x1")).total_new == 1


class CountingRepository:
    def __init__(self):
        self.state = empty_state()
        self.saves = 0

    def load(self, platform):
        return json.loads(json.dumps(self.state))

    def save(self, platform, state):
        self.saves += 1
        self.state = state
        return True


def test_any_repository_with_load_and_save_can_back_the_cache(clock):
    repository = CountingRepository()
    cache = DiscoveryCache("imovirtual", repository, clock=clock)

    cache.update(_listings("x1", "x2"))

    assert repository.saves == 1
    assert sorted(repository.state["ads"]) == ["x1", "x2"]
    assert [listing.ad_id for listing in cache.filter_new(_listings("x2", "x9"))] == ["x9"]
