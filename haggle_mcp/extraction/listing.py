"""Extract vehicle, dealer, and pricing facts from a fetched listing page.

Dispatch is by hostname: directory dealers get an inventory-path parser and
their canonical contact record, marketplaces get JSON-LD plus the generic
vehicle/price scan, and everything else falls through to the generic
extractor.  Once HTML is in hand nothing here raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from haggle_mcp.extraction.conversation import (
    LISTING_PRICE_RANGE,
    find_dealer_email,
    find_phone,
    first_hit,
    make_model_from_table,
    MILEAGE_STRATEGIES,
    pick_asking_price,
    prices_in_range,
    year_before_make,
)
from haggle_mcp.extraction.records import ExtractedDealer, ExtractionResult
from haggle_mcp.extraction.tables import DEFAULT_TABLES, ExtractionTables
from haggle_mcp.extraction.vin import find_labeled_vin, find_vin
from haggle_mcp.normalization import capitalize_first, parse_price

logger = logging.getLogger(__name__)

# /inventory/used-<year>-<make>-<model>-<x>-<trim>-<x>-<x>-<vin>/
_INVENTORY_PATH_RE = re.compile(
    r"/inventory/(?:used|new|certified)-(\d{4})-([^-/]+)-([^-/]+)-[^-/]+-([^-/]+)-[^-/]+-[^-/]+-([^/]+)/"
)
_TITLE_VEHICLE_RE = re.compile(r"\b((?:19|20)\d{2})\s+([A-Za-z][A-Za-z-]+)\s+([A-Za-z0-9][A-Za-z0-9-]*)")

_AMOUNT = r"(\d{1,3}(?:,\d{3})+|\d+)"
PRICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\$\s?" + _AMOUNT),
    re.compile(r"\"price\"\s*:\s*\"?" + _AMOUNT),
    re.compile(r"data-price=[\"']?\$?" + _AMOUNT),
    re.compile(r"(?:class|id)=\"[^\"]*price[^\"]*\"[^>]*>\s*\$?\s*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"<meta[^>]*property=\"product:price:amount\"[^>]*content=\"" + _AMOUNT),
    re.compile(r"itemprop=\"price\"[^>]*?(?:content=\"|>\s*\$?\s*)" + _AMOUNT),
    re.compile(
        r"(?:MSRP|Our Price|Sale Price|Special Price|Internet Price)\s*:?\s*\$?\s*" + _AMOUNT,
        re.IGNORECASE,
    ),
)
_DEALER_LABEL_RE = re.compile(r"\bdealer(?:ship)?(?:\s+name)?\s*:\s*([^<\n|]{3,80})", re.IGNORECASE)

MARKETPLACE_DOMAINS: tuple[str, ...] = ("cargurus.com", "cars.com", "autotrader.com")


def _hostname(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def dealer_name_from_hostname(hostname: str) -> str:
    """``www.round-rock-honda.com`` -> ``Round Rock Honda``."""
    host = re.sub(r"^www\.", "", hostname.lower())
    label = host.split(".")[0] if host else ""
    return label.replace("-", " ").title()


# ── Generic scans ───────────────────────────────────────────────────


def collect_prices(html: str) -> list[int]:
    """Every candidate from every markup shape, inside the listing price range."""
    candidates: list[int] = []
    for pattern in PRICE_PATTERNS:
        for match in pattern.finditer(html):
            candidates.append(int(match.group(1).replace(",", "")))
    return prices_in_range(candidates, LISTING_PRICE_RANGE)


def _heading_texts(soup: BeautifulSoup) -> list[str]:
    texts = []
    for tag_name in ("title", "h1"):
        tag = soup.find(tag_name)
        if tag is not None:
            text = tag.get_text(" ", strip=True)
            if text:
                texts.append(text)
    return texts


def _apply_heading_vehicle(soup: BeautifulSoup, result: ExtractionResult, tables: ExtractionTables) -> None:
    vehicle = result.vehicle
    for text in _heading_texts(soup):
        known = make_model_from_table(text, tables)
        if known is not None:
            year = year_before_make(text, known.start)
            if year is None:
                continue
            vehicle.year = vehicle.year or year
            vehicle.make = vehicle.make or known.make
            vehicle.model = vehicle.model or known.model
            return
        match = _TITLE_VEHICLE_RE.search(text)
        if match:
            vehicle.year = vehicle.year or int(match.group(1))
            vehicle.make = vehicle.make or capitalize_first(match.group(2))
            vehicle.model = vehicle.model or match.group(3)
            return


def _apply_generic_vehicle(
    soup: BeautifulSoup, page_text: str, result: ExtractionResult, tables: ExtractionTables
) -> None:
    _apply_heading_vehicle(soup, result, tables)
    vehicle = result.vehicle
    if not vehicle.vin:
        vehicle.vin = find_labeled_vin(page_text) or find_vin(page_text)
    if vehicle.mileage is None:
        vehicle.mileage = first_hit(MILEAGE_STRATEGIES, page_text, tables)


def _apply_generic_price(html: str, result: ExtractionResult) -> None:
    if result.pricing.asking_price is None:
        result.pricing.asking_price = pick_asking_price(collect_prices(html))


def _in_page_dealer_name(soup: BeautifulSoup, page_text: str) -> str:
    site_name = soup.find("meta", attrs={"property": "og:site_name"})
    if site_name is not None and site_name.get("content"):
        return str(site_name["content"]).strip()
    match = _DEALER_LABEL_RE.search(page_text)
    if match:
        return match.group(1).strip()
    return ""


def _apply_generic_dealer(
    url: str, soup: BeautifulSoup, page_text: str, result: ExtractionResult, tables: ExtractionTables
) -> None:
    dealer = result.dealer
    dealer.name = _in_page_dealer_name(soup, page_text) or dealer_name_from_hostname(_hostname(url))
    dealer.website = url
    dealer.contact_email = find_dealer_email(page_text, tables)
    dealer.phone = find_phone(page_text)


def find_json_ld_vehicle(soup: BeautifulSoup) -> dict[str, Any] | None:
    """First JSON-LD object that looks like a vehicle or offer."""
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict) and (item.get("name") or item.get("offers")):
                return item
    return None


# ── Site extractors ─────────────────────────────────────────────────


def _extract_directory_dealer(
    url: str, soup: BeautifulSoup, html: str, page_text: str, result: ExtractionResult,
    tables: ExtractionTables,
) -> None:
    known = tables.known_dealer_for_host(_hostname(url))
    match = _INVENTORY_PATH_RE.search(url)
    if match:
        year, make, model, trim, vin = match.groups()
        vehicle = result.vehicle
        vehicle.year = int(year)
        vehicle.make = capitalize_first(make)
        vehicle.model = capitalize_first(model)
        vehicle.trim = trim.upper()
        vehicle.vin = vin.upper()
        vehicle.condition = "used"
    _apply_generic_price(html, result)
    if known is not None:
        result.dealer = ExtractedDealer(
            name=known.name,
            contact_email=known.contact_email,
            phone=known.phone,
            address=known.address,
            website=known.website,
        )


def _seller_name(offers: dict[str, Any]) -> str:
    seller = offers.get("seller")
    if isinstance(seller, dict) and seller.get("name"):
        return str(seller["name"]).strip()
    return ""


def _extract_marketplace(
    url: str, soup: BeautifulSoup, html: str, page_text: str, result: ExtractionResult,
    tables: ExtractionTables,
) -> None:
    data = find_json_ld_vehicle(soup)
    seller = ""
    if data is not None:
        name_match = _TITLE_VEHICLE_RE.search(str(data.get("name") or ""))
        if name_match:
            result.vehicle.year = int(name_match.group(1))
            result.vehicle.make = name_match.group(2)
            result.vehicle.model = name_match.group(3)
        offers = data.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        if isinstance(offers, dict):
            seller = _seller_name(offers)
            price = parse_price(offers.get("price"))
            in_range = prices_in_range([int(price)], LISTING_PRICE_RANGE) if price is not None else []
            if in_range:
                result.pricing.asking_price = in_range[0]
            elif offers.get("price") is not None:
                logger.debug("JSON-LD offer price %r on %s rejected", offers["price"], url)
    _apply_generic_vehicle(soup, page_text, result, tables)
    _apply_generic_price(html, result)
    _apply_generic_dealer(url, soup, page_text, result, tables)
    if seller:
        result.dealer.name = seller


def _extract_generic(
    url: str, soup: BeautifulSoup, html: str, page_text: str, result: ExtractionResult,
    tables: ExtractionTables,
) -> None:
    _apply_generic_vehicle(soup, page_text, result, tables)
    _apply_generic_price(html, result)
    _apply_generic_dealer(url, soup, page_text, result, tables)


SiteExtractor = Callable[
    [str, BeautifulSoup, str, str, ExtractionResult, ExtractionTables], None
]


def select_extractor(url: str, tables: ExtractionTables = DEFAULT_TABLES) -> SiteExtractor:
    host = _hostname(url)
    if host and tables.known_dealer_for_host(host) is not None:
        return _extract_directory_dealer
    if any(_host_matches(host, domain) for domain in MARKETPLACE_DOMAINS):
        return _extract_marketplace
    return _extract_generic


def extract_listing(
    url: str, html: str, *, tables: ExtractionTables = DEFAULT_TABLES
) -> ExtractionResult:
    """Best-effort ``{vehicle, dealer, pricing}`` record from a listing page."""
    html = html or ""
    result = ExtractionResult()
    result.vehicle.listing_url = url
    soup = BeautifulSoup(html, "html.parser")
    page_text = soup.get_text(" ", strip=True)
    extractor = select_extractor(url, tables)
    logger.debug("Listing %s handled by %s", url, extractor.__name__)
    extractor(url, soup, html, page_text, result, tables)
    return result


def fallback_listing(url: str) -> ExtractionResult:
    """Last-resort record when the page could not be fetched or parsed."""
    result = ExtractionResult()
    result.vehicle.listing_url = url
    result.dealer.name = _hostname(url) or url
    return result
