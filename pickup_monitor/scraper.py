"""In-store pickup availability sources.

Every source answers the same question: for a set of variants and a set
of store ids, which stores can hand over which variants right now.
Sources return ``{store_id: StoreAvailability}`` or raise `FetchError`.

  * `PickupApiSource`     - the retail pickup-message JSON endpoint
  * `BrowserScrapeSource` - headless Chromium on the buy page (Playwright)
  * `UnavailableSource`   - every configured store marked unavailable
  * `FallbackSource`      - tries the above in order
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from . import config
from .utils import BROWSER_USER_AGENT, HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

NOT_YET_AVAILABLE = "Not yet available for pickup"


class FetchError(Exception):
    """A variant query or a whole source produced no usable data."""


@dataclass(frozen=True)
class Variant:
    sku: str
    model: str
    storage: str
    color: str


@dataclass(frozen=True)
class AvailableVariant:
    variant: Variant
    pickup_quote: str = "Check store"

    @property
    def sku(self) -> str:
        return self.variant.sku


@dataclass
class StoreAvailability:
    store_id: str
    name: str
    address: str
    available: bool = False
    variants: List[AvailableVariant] = field(default_factory=list)
    message: str = NOT_YET_AVAILABLE

    def has_sku(self, sku: str) -> bool:
        return any(v.sku == sku for v in self.variants)

    def to_dict(self) -> dict:
        return {
            "storeId": self.store_id,
            "storeName": self.name,
            "address": self.address,
            "available": self.available,
            "availableVariants": [
                {**asdict(v.variant), "pickupTime": v.pickup_quote} for v in self.variants
            ],
            "message": self.message,
        }


Snapshot = Dict[str, StoreAvailability]


class AvailabilitySource(Protocol):
    name: str

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        ...


def load_variants(catalog: Optional[Mapping[str, tuple]] = None) -> List[Variant]:
    """Build the polled variant list from the static catalog (catalog order)."""
    catalog = config.ALL_VARIANTS if catalog is None else catalog
    return [Variant(sku, model, storage, color) for sku, (model, storage, color) in catalog.items()]


def find_variant(sku: str, variants: Iterable[Variant]) -> Optional[Variant]:
    for v in variants:
        if v.sku == sku:
            return v
    return None


def empty_store(store_id: str) -> StoreAvailability:
    return StoreAvailability(
        store_id=store_id,
        name=config.STORE_NAMES.get(store_id, store_id),
        address=config.STORE_ADDRESSES.get(store_id, ""),
    )


def _merge_variant(
    merged: Snapshot,
    variant: Variant,
    per_store: Mapping[str, Optional[str]],
) -> None:
    """Fold one variant's per-store result into ``merged``.

    ``per_store`` maps store id to the pickup quote when the variant is
    available there, or None when the store answered but cannot supply it.
    """
    for store_id, quote in per_store.items():
        entry = merged.get(store_id)
        if entry is None:
            entry = merged[store_id] = empty_store(store_id)
        if quote is None:
            continue
        entry.available = True
        entry.variants.append(AvailableVariant(variant, quote))
        entry.message = f"{len(entry.variants)} variant(s) available"


# ---------------------------
# Structured pickup-message endpoint
# ---------------------------

@retryable_request
def _get(session: requests.Session, url: str, **kwargs: dict) -> requests.Response:
    """Thin wrapper around session.get with retry policy from utils.retryable_request."""
    return session.get(url, **kwargs)


def parse_pickup_response(data: dict, sku: str, store_ids: Sequence[str]) -> Dict[str, Optional[str]]:
    """Return ``{store_id: pickup quote or None}`` for the configured stores in ``data``."""
    if not isinstance(data, dict):
        raise FetchError("Pickup response is not a JSON object")
    body = data.get("body") or {}
    stores = body.get("stores") if isinstance(body, dict) else None
    if stores is None:
        stores = data.get("stores") or []

    out: Dict[str, Optional[str]] = {}
    for store in stores:
        store_id = str(store.get("storeNumber") or "")
        if store_id not in store_ids:
            continue
        parts = store.get("partsAvailability") or {}
        part = parts.get(sku) or {}
        title = part.get("storePickupProductTitle") or ""
        available = part.get("pickupDisplay") == "available" or "Available" in title
        out[store_id] = (part.get("pickupSearchQuote") or "Check store") if available else None
    return out


class PickupApiSource:
    """Query the pickup-message endpoint once per variant for all stores."""

    name = "api"

    def __init__(
        self,
        *,
        url: str = config.AVAILABILITY_URL,
        referer: str = config.BASE_URL,
        timeout: float = config.FETCH_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.referer = referer
        self.timeout = timeout
        self._session = session

    def _query(self, session: requests.Session, variant: Variant, stores: Sequence[str]) -> Dict[str, Optional[str]]:
        params = {
            "parts.0": variant.sku,
            "searchNearby": "true",
            "store": ",".join(stores),
        }
        try:
            resp = _get(
                session,
                self.url,
                params=params,
                headers={"Referer": self.referer},
                timeout=self.timeout,
            )
            data = resp.json()
        except (HTTPError, ValueError) as e:
            raise FetchError(f"{variant.sku}: {e}") from e
        try:
            return parse_pickup_response(data, variant.sku, stores)
        except (AttributeError, TypeError) as e:
            raise FetchError(f"{variant.sku}: unexpected response shape ({e})") from e

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        close_session = False
        session = self._session
        if session is None:
            session = get_http_session()
            close_session = True

        merged: Snapshot = {}
        try:
            for variant in variants:
                try:
                    per_store = self._query(session, variant, stores)
                except FetchError as e:
                    logger.debug("Failed to check variant %s: %s", variant.sku, e)
                    continue
                _merge_variant(merged, variant, per_store)
        finally:
            if close_session:
                session.close()

        if not merged:
            raise FetchError("Pickup endpoint returned no store data")
        return merged


# ---------------------------
# Headless browser fallback
# ---------------------------

_STORE_SELECTOR = ".rf-pickup-store, [data-store-id]"
_AVAILABILITY_TEXT_SELECTOR = ".rf-pickup-store-availability"
_NEGATIVE_PHRASES = ("unavailable", "not available", "sold out")


def _slug(text: str) -> str:
    return "".join(ch for ch in text.lower() if ch.isalnum())


def variant_selectors(variant: Variant) -> List[str]:
    """The buy page controls to click, in order, to configure ``variant``."""
    screen = "6_9inch" if variant.model.lower().endswith("max") else "6_3inch"
    return [
        f'[data-autom="dimensionScreensize{screen}"]',
        f'[data-autom="dimensionColor{_slug(variant.color)}"]',
        f'[data-autom="dimensionCapacity{_slug(variant.storage)}"]',
    ]


def _store_is_available(store: Tag) -> bool:
    if store.select_one('[data-autom="pickupAvailable"]') is not None:
        return True
    status = store.select_one(_AVAILABILITY_TEXT_SELECTOR)
    text = (status.get_text(" ", strip=True) if status else "").lower()
    if not text or any(p in text for p in _NEGATIVE_PHRASES):
        return False
    return "available" in text


def parse_store_markup(html: str, store_ids: Sequence[str]) -> Dict[str, Optional[str]]:
    """Read per-store availability from the rendered pickup panel.

    Returns ``{store_id: availability text or None}`` for configured stores.
    Stores without an explicit positive marker are treated as unavailable.
    """
    soup = BeautifulSoup(html, "html.parser")
    out: Dict[str, Optional[str]] = {}
    for el in soup.select(_STORE_SELECTOR):
        store_id = el.get("data-store-id")
        if not store_id:
            inner = el.select_one("[data-store-id]")
            store_id = inner.get("data-store-id") if inner else None
        if not store_id or store_id not in store_ids or store_id in out:
            continue
        status = el.select_one(_AVAILABILITY_TEXT_SELECTOR)
        text = status.get_text(" ", strip=True) if status else ""
        out[store_id] = (text or "Available") if _store_is_available(el) else None
        logger.debug("Store %s scraped availability: %r", store_id, text)
    return out


def _sync_playwright():
    from playwright.sync_api import sync_playwright  # heavy; only needed when scraping

    return sync_playwright()


class BrowserScrapeSource:
    """Render the buy page in headless Chromium and read the pickup panel.

    Playwright's sync objects belong to the thread that started them, so
    every `fetch` starts its own driver and browser and shuts both down
    before returning.
    """

    name = "scrape"

    def __init__(
        self,
        *,
        page_url: str = config.BASE_URL,
        timeout_ms: int = config.BROWSER_TIMEOUT_MS,
    ) -> None:
        self.page_url = page_url
        self.timeout_ms = timeout_ms

    def _render(self, browser, variant: Variant) -> str:
        ctx = browser.new_context(
            user_agent=BROWSER_USER_AGENT,
            locale="en-SG",
            viewport={"width": 1366, "height": 768},
        )
        try:
            page = ctx.new_page()
            page.goto(self.page_url, wait_until="networkidle", timeout=self.timeout_ms)
            page.wait_for_selector('[data-autom^="dimensionScreensize"]', timeout=10000)
            for selector in variant_selectors(variant):
                page.click(selector)
                page.wait_for_timeout(1000)
            button = page.query_selector(
                '[data-autom="deliveryMessage"] button, [data-autom="pickupMessage"] button'
            )
            if button:
                button.click()
                page.wait_for_timeout(2000)
            page.wait_for_selector(f'[data-autom="storeLocator"], {_STORE_SELECTOR}', timeout=10000)
            return page.content()
        finally:
            ctx.close()

    def _scrape(self, browser, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        merged: Snapshot = {}
        for variant in variants:
            try:
                html = self._render(browser, variant)
            except Exception as e:
                # Playwright raises its own error types (timeouts, detached frames)
                logger.debug("Scrape failed for variant %s: %s", variant.sku, e)
                continue
            _merge_variant(merged, variant, parse_store_markup(html, stores))
        return merged

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        try:
            with _sync_playwright() as p:
                browser = p.chromium.launch(
                    headless=True, args=["--no-sandbox", "--disable-setuid-sandbox"]
                )
                try:
                    merged = self._scrape(browser, variants, stores)
                finally:
                    browser.close()
        except Exception as e:
            logger.warning("Browser scrape unavailable: %s", e)
            raise FetchError(f"Browser scrape failed: {e}") from e
        if not merged:
            raise FetchError("Browser scrape found no store data")
        return merged


# ---------------------------
# Defaults and chaining
# ---------------------------

class UnavailableSource:
    """Every configured store, unavailable. Used when nothing answered."""

    name = "default"

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        logger.info("No store availability data; marking all %d stores unavailable", len(stores))
        return {store_id: empty_store(store_id) for store_id in stores}


class FallbackSource:
    """Try each source in order and return the first successful result."""

    name = "fallback"

    def __init__(self, sources: Sequence[AvailabilitySource]) -> None:
        if not sources:
            raise ValueError("FallbackSource needs at least one source")
        self.sources = list(sources)
        self.last_source: Optional[str] = None

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Snapshot:
        errors: List[str] = []
        for source in self.sources:
            try:
                result = source.fetch(variants, stores)
            except FetchError as e:
                logger.info("Source %s failed: %s", source.name, e)
                errors.append(f"{source.name}: {e}")
                continue
            self.last_source = source.name
            return result
        self.last_source = None
        raise FetchError("All availability sources failed (" + "; ".join(errors) + ")")


def build_default_source(*, scrape_fallback: bool = config.SCRAPE_FALLBACK_ENABLED) -> FallbackSource:
    sources: List[AvailabilitySource] = [PickupApiSource()]
    if scrape_fallback:
        sources.append(BrowserScrapeSource())
    sources.append(UnavailableSource())
    return FallbackSource(sources)


__all__ = [
    "FetchError",
    "Variant",
    "AvailableVariant",
    "StoreAvailability",
    "Snapshot",
    "AvailabilitySource",
    "PickupApiSource",
    "BrowserScrapeSource",
    "UnavailableSource",
    "FallbackSource",
    "build_default_source",
    "load_variants",
    "find_variant",
    "empty_store",
    "parse_pickup_response",
    "parse_store_markup",
    "variant_selectors",
]
