"""Tests for availability sources and the fallback chain."""

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from conftest import OTHER, PREFERRED, VARIANTS, StaticSource, snapshot

from pickup_monitor.scraper import (
    BrowserScrapeSource,
    FallbackSource,
    FetchError,
    PickupApiSource,
    UnavailableSource,
    build_default_source,
    load_variants,
    parse_pickup_response,
    parse_store_markup,
    variant_selectors,
)

STORES = ["R669", "R673", "R676"]


class FakeBrowser:
    def __init__(self, owner: int) -> None:
        self.owner = owner
        self.closed = False

    def use(self) -> None:
        # sync Playwright objects fail like this when touched from another thread
        if threading.get_ident() != self.owner:
            raise RuntimeError("cannot switch to a different thread")

    def close(self) -> None:
        self.use()
        self.closed = True


class FakeDriverSession:
    def __init__(self, driver: "FakePlaywright") -> None:
        self.driver = driver
        self.owner = None
        self.stopped = False
        self.browser = None
        self.chromium = SimpleNamespace(launch=self._launch)

    def __enter__(self):
        self.owner = threading.get_ident()
        return self

    def __exit__(self, *exc_info) -> bool:
        self.stopped = True
        return False

    def _launch(self, **kwargs) -> FakeBrowser:
        if threading.get_ident() != self.owner:
            raise RuntimeError("cannot switch to a different thread")
        with self.driver.lock:
            if self.driver.failed_launches_left:
                self.driver.failed_launches_left -= 1
                raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")
        self.browser = FakeBrowser(self.owner)
        return self.browser


class FakePlaywright:
    """Stand-in for ``sync_playwright``; records every driver session it hands out."""

    def __init__(self, failed_launches: int = 0) -> None:
        self.failed_launches_left = failed_launches
        self.sessions = []
        self.lock = threading.Lock()

    def __call__(self) -> FakeDriverSession:
        session = FakeDriverSession(self)
        with self.lock:
            self.sessions.append(session)
        return session


def _rendering(pages: dict):
    def fake_render(browser, variant):
        browser.use()
        if variant.sku not in pages:
            raise RuntimeError("Timeout 10000ms exceeded")
        return pages[variant.sku]

    return fake_render


def _pickup_payload(sku: str, available: dict) -> dict:
    """Build a pickup-message body: ``available`` maps store id -> bool."""
    return {
        "body": {
            "stores": [
                {
                    "storeNumber": store_id,
                    "storeName": f"Store {store_id}",
                    "partsAvailability": {
                        sku: {
                            "pickupDisplay": "available" if ok else "unavailable",
                            "pickupSearchQuote": "Today" if ok else "Currently unavailable",
                        }
                    },
                }
                for store_id, ok in available.items()
            ]
        }
    }


def _response(payload=None, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    """tenacity waits between attempts; tests should not."""
    monkeypatch.setattr("time.sleep", lambda s: None)


class TestParsePickupResponse:
    def test_available_by_pickup_display(self) -> None:
        data = _pickup_payload(PREFERRED.sku, {"R669": True, "R673": False})

        out = parse_pickup_response(data, PREFERRED.sku, STORES)

        assert out == {"R669": "Today", "R673": None}

    def test_available_by_product_title(self) -> None:
        data = {
            "stores": [
                {
                    "storeNumber": "R676",
                    "partsAvailability": {
                        PREFERRED.sku: {"storePickupProductTitle": "Available for pickup"}
                    },
                }
            ]
        }

        out = parse_pickup_response(data, PREFERRED.sku, STORES)

        assert out == {"R676": "Check store"}

    def test_ignores_unconfigured_stores(self) -> None:
        data = _pickup_payload(PREFERRED.sku, {"R999": True})

        assert parse_pickup_response(data, PREFERRED.sku, STORES) == {}

    def test_rejects_non_object(self) -> None:
        with pytest.raises(FetchError):
            parse_pickup_response(["nope"], PREFERRED.sku, STORES)


class TestPickupApiSource:
    def test_merges_variants_per_store(self) -> None:
        session = MagicMock()
        session.get.side_effect = [
            _response(_pickup_payload(PREFERRED.sku, {"R669": True, "R673": False})),
            _response(_pickup_payload(OTHER.sku, {"R669": True, "R673": True})),
        ]
        source = PickupApiSource(url="https://example.test/pickup", session=session)

        result = source.fetch(VARIANTS, STORES)

        assert set(result) == {"R669", "R673"}
        assert [v.sku for v in result["R669"].variants] == [PREFERRED.sku, OTHER.sku]
        assert result["R669"].message == "2 variant(s) available"
        assert result["R673"].available is True
        assert [v.sku for v in result["R673"].variants] == [OTHER.sku]
        assert result["R669"].name == "Apple Orchard Road"

        params = session.get.call_args_list[0].kwargs["params"]
        assert params == {"parts.0": PREFERRED.sku, "searchNearby": "true", "store": "R669,R673,R676"}
        assert session.get.call_args_list[0].kwargs["timeout"] == source.timeout

    def test_store_answering_without_stock_is_unavailable(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(_pickup_payload(PREFERRED.sku, {"R669": False}))
        source = PickupApiSource(session=session)

        result = source.fetch([PREFERRED], STORES)

        assert result["R669"].available is False
        assert result["R669"].variants == []
        assert result["R669"].message == "Not yet available for pickup"

    def test_failed_variant_is_skipped(self) -> None:
        session = MagicMock()
        session.get.side_effect = [
            _response(None, status=404),
            _response(_pickup_payload(OTHER.sku, {"R673": True})),
        ]
        source = PickupApiSource(session=session)

        result = source.fetch(VARIANTS, STORES)

        assert set(result) == {"R673"}
        assert result["R673"].has_sku(OTHER.sku)

    def test_invalid_json_is_skipped(self) -> None:
        bad = _response()
        bad.json.side_effect = ValueError("Expecting value")
        session = MagicMock()
        session.get.side_effect = [bad, _response(_pickup_payload(OTHER.sku, {"R669": False}))]

        result = PickupApiSource(session=session).fetch(VARIANTS, STORES)

        assert set(result) == {"R669"}

    def test_no_store_data_raises(self) -> None:
        session = MagicMock()
        session.get.return_value = _response({"body": {"stores": []}})

        with pytest.raises(FetchError):
            PickupApiSource(session=session).fetch(VARIANTS, STORES)

    def test_network_error_retried_then_skipped(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")

        with pytest.raises(FetchError):
            PickupApiSource(session=session).fetch([PREFERRED], STORES)
        assert session.get.call_count == 3


STORE_MARKUP = """
<div class="rf-pickup-stores">
  <div class="rf-pickup-store" data-store-id="R669">
    <span class="rf-pickup-store-availability">Available today</span>
  </div>
  <div class="rf-pickup-store" data-store-id="R673">
    <span class="rf-pickup-store-availability">Currently unavailable</span>
  </div>
  <div class="rf-pickup-store">
    <span data-store-id="R676"></span>
    <span data-autom="pickupAvailable"></span>
  </div>
  <div class="rf-pickup-store" data-store-id="R999">
    <span class="rf-pickup-store-availability">Available today</span>
  </div>
</div>
"""


class TestParseStoreMarkup:
    def test_reads_per_store_availability(self) -> None:
        out = parse_store_markup(STORE_MARKUP, STORES)

        assert out["R669"] == "Available today"
        assert out["R673"] is None
        assert out["R676"] == "Available"
        assert "R999" not in out

    def test_missing_status_text_is_unavailable(self) -> None:
        html = '<div class="rf-pickup-store" data-store-id="R669"><p>Orchard</p></div>'

        assert parse_store_markup(html, STORES) == {"R669": None}


class TestBrowserScrapeSource:
    def test_selectors_follow_variant(self) -> None:
        assert variant_selectors(PREFERRED) == [
            '[data-autom="dimensionScreensize6_9inch"]',
            '[data-autom="dimensionColorsilver"]',
            '[data-autom="dimensionCapacity256gb"]',
        ]
        assert variant_selectors(OTHER)[0] == '[data-autom="dimensionScreensize6_3inch"]'

    def test_fetch_merges_rendered_pages(self, monkeypatch) -> None:
        driver = FakePlaywright()
        monkeypatch.setattr("pickup_monitor.scraper._sync_playwright", driver)
        source = BrowserScrapeSource()
        monkeypatch.setattr(source, "_render", _rendering({PREFERRED.sku: STORE_MARKUP}))

        result = source.fetch(VARIANTS, STORES)

        assert result["R669"].has_sku(PREFERRED.sku)
        assert result["R673"].available is False
        assert result["R676"].has_sku(PREFERRED.sku)
        assert driver.sessions[0].browser.closed is True
        assert driver.sessions[0].stopped is True

    def test_fetch_without_data_raises(self, monkeypatch) -> None:
        driver = FakePlaywright()
        monkeypatch.setattr("pickup_monitor.scraper._sync_playwright", driver)
        source = BrowserScrapeSource()
        monkeypatch.setattr(source, "_render", lambda browser, variant: "<html></html>")

        with pytest.raises(FetchError):
            source.fetch(VARIANTS, STORES)
        assert driver.sessions[0].stopped is True

    def test_fetches_from_different_threads_use_their_own_browser(self, monkeypatch) -> None:
        driver = FakePlaywright()
        monkeypatch.setattr("pickup_monitor.scraper._sync_playwright", driver)
        source = BrowserScrapeSource()
        both_rendering = threading.Barrier(2, timeout=5)
        render = _rendering({PREFERRED.sku: STORE_MARKUP})

        def overlapping_render(browser, variant):
            if variant.sku == PREFERRED.sku:
                both_rendering.wait()
            return render(browser, variant)

        monkeypatch.setattr(source, "_render", overlapping_render)
        results, errors = {}, []

        def worker(name: str) -> None:
            try:
                results[name] = source.fetch([PREFERRED], STORES)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(name,)) for name in ("scheduled", "manual")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert errors == []
        assert set(results) == {"scheduled", "manual"}
        assert all(r["R669"].has_sku(PREFERRED.sku) for r in results.values())
        assert len(driver.sessions) == 2
        assert driver.sessions[0].owner != driver.sessions[1].owner
        assert all(s.stopped and s.browser.closed for s in driver.sessions)

    def test_failed_launch_shuts_driver_down_and_next_fetch_recovers(self, monkeypatch) -> None:
        driver = FakePlaywright(failed_launches=1)
        monkeypatch.setattr("pickup_monitor.scraper._sync_playwright", driver)
        source = BrowserScrapeSource()
        monkeypatch.setattr(source, "_render", _rendering({PREFERRED.sku: STORE_MARKUP}))

        with pytest.raises(FetchError, match="Executable doesn't exist"):
            source.fetch(VARIANTS, STORES)
        assert driver.sessions[0].stopped is True
        assert driver.sessions[0].browser is None

        result = source.fetch(VARIANTS, STORES)

        assert result["R669"].has_sku(PREFERRED.sku)
        assert len(driver.sessions) == 2
        assert driver.sessions[1].stopped is True


class TestFallbackSource:
    def test_first_success_wins(self) -> None:
        failing = StaticSource(FetchError("no data"))
        failing.name = "api"
        chain = FallbackSource([failing, StaticSource(snapshot(R669=[OTHER]))])

        result = chain.fetch(VARIANTS, STORES)

        assert set(result) == {"R669"}
        assert chain.last_source == "static"

    def test_default_source_covers_every_store(self) -> None:
        failing = StaticSource(FetchError("no data"))
        chain = FallbackSource([failing, UnavailableSource()])

        result = chain.fetch(VARIANTS, STORES)

        assert set(result) == set(STORES)
        assert all(not s.available for s in result.values())
        assert chain.last_source == "default"

    def test_all_failing_raises(self) -> None:
        chain = FallbackSource([StaticSource(FetchError("a")), StaticSource(FetchError("b"))])

        with pytest.raises(FetchError, match="All availability sources failed"):
            chain.fetch(VARIANTS, STORES)
        assert chain.last_source is None

    def test_build_default_source_order(self) -> None:
        assert [s.name for s in build_default_source(scrape_fallback=False).sources] == ["api", "default"]
        assert [s.name for s in build_default_source(scrape_fallback=True).sources] == [
            "api",
            "scrape",
            "default",
        ]


def test_load_variants_keeps_catalog_order() -> None:
    variants = load_variants({"A": ("Pro", "128GB", "Gold"), "B": ("Pro Max", "1TB", "Silver")})

    assert [v.sku for v in variants] == ["A", "B"]
    assert variants[1].model == "Pro Max"
