"""Pattern-based extraction of vehicle, dealer, and pricing facts from conversations.

Pure logic, no DB or I/O.  Each field is resolved by an ordered tuple of
strategies evaluated with first-hit-wins semantics; the top-level pipeline is
an ordered list of ``(name, predicate, step)`` entries so that precedence is
auditable and every strategy is unit-testable on its own.

Extraction never raises: an unmatched field keeps its default.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from haggle_mcp.extraction.records import (
    ExtractedDealer,
    ExtractionResult,
)
from haggle_mcp.extraction.tables import DEFAULT_TABLES, ExtractionTables
from haggle_mcp.extraction.vin import decode_model_year, find_vin

logger = logging.getLogger(__name__)

T = TypeVar("T")
Strategy = Callable[[str, ExtractionTables], Optional[T]]

CONVERSATION_PRICE_RANGE: tuple[int, int] = (5_000, 200_000)
LISTING_PRICE_RANGE: tuple[int, int] = (1_000, 500_000)
MAX_MILEAGE = 500_000

_DOLLAR_RE = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"(?<!\d)(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})(?!\d)")
_YEAR_RE = re.compile(r"\b(19[89]\d|20[0-3]\d)\b")
_YEAR_BEFORE_RE = re.compile(r"\b(19[89]\d|20[0-3]\d)\s+$")
_MILES_RE = re.compile(r"(?<![\d$,.])(\d{1,3}(?:,\d{3})+|\d+)\s*(?:miles?|mi)\b", re.IGNORECASE)
_K_MILES_RE = re.compile(
    r"(?<![\d$,.])(\d{1,3}(?:\.\d)?)\s*k\b(?:\s*(?:miles?|mi)\b)?", re.IGNORECASE
)
_STOCK_RE = re.compile(
    r"\b(?i:stock|stk|inventory)\b\.?\s*(?i:number|num|no\.?|#)?\s*[#:.-]?\s*"
    r"((?=[A-Za-z0-9-]*\d)[A-Za-z0-9][A-Za-z0-9-]*)"
)
_CERTIFIED_RE = re.compile(r"\b(?:certified\s+pre-?owned|CPO)\b", re.IGNORECASE)

_MODEL_STOPWORDS = frozenset({
    "of", "at", "in", "and", "the", "dealer", "dealership", "motors", "for", "is", "on",
})
_WORD = r"[A-Z][A-Za-z'&-]*"
_CITY = r"[A-Z][A-Za-z]+(?:\s+[A-Z][A-Za-z]+){0,2}"


# ── Generic helpers ─────────────────────────────────────────────────


def first_hit(
    strategies: Iterable[Strategy[T]], text: str, tables: ExtractionTables
) -> T | None:
    """Return the first non-empty strategy result, in declaration order."""
    for strategy in strategies:
        value = strategy(text, tables)
        if value not in (None, "", ()):
            return value
    return None


def find_dollar_amounts(text: str) -> list[int]:
    """All ``$``-prefixed amounts in document order, cents dropped."""
    amounts: list[int] = []
    for match in _DOLLAR_RE.finditer(text or ""):
        try:
            amounts.append(int(match.group(1).replace(",", "")))
        except ValueError:
            continue
    return amounts


def prices_in_range(amounts: Iterable[int], price_range: tuple[int, int]) -> list[int]:
    low, high = price_range
    return [a for a in amounts if low <= a <= high]


def pick_asking_price(amounts: Sequence[int]) -> int | None:
    """Highest surviving figure wins: a thread's largest price is most often the ask."""
    return max(amounts) if amounts else None


def is_dealer_email(email: str, tables: ExtractionTables) -> bool:
    domain = email.rsplit("@", 1)[-1].lower()
    for excluded in tables.excluded_email_domains():
        if domain == excluded or domain.endswith("." + excluded):
            return False
    return True


def find_dealer_email(text: str, tables: ExtractionTables = DEFAULT_TABLES) -> str:
    for match in _EMAIL_RE.finditer(text or ""):
        if is_dealer_email(match.group(0), tables):
            return match.group(0)
    return ""


def find_phone(text: str) -> str:
    match = _PHONE_RE.search(text or "")
    return match.group(1) if match else ""


def _plausible_dealer_name(name: str) -> bool:
    return len(name) > 3 and "@" not in name


# ── Make / model strategies ─────────────────────────────────────────


@dataclass(frozen=True)
class MakeModelMatch:
    make: str
    model: str
    start: int


def make_model_from_table(text: str, tables: ExtractionTables) -> MakeModelMatch | None:
    """Exact ``<make> <model>`` pair from the curated table; earliest in the text wins."""
    best: MakeModelMatch | None = None
    for make, regex, canonical in tables.make_model_patterns:
        match = regex.search(text)
        if match is None or (best is not None and match.start() >= best.start):
            continue
        model_key = re.sub(r"\s+", " ", match.group(2).lower())
        best = MakeModelMatch(make, canonical.get(model_key, match.group(2)), match.start())
    return best


def make_model_from_manufacturer(text: str, tables: ExtractionTables) -> MakeModelMatch | None:
    """Any known manufacturer followed by one free-form model token."""
    regex = re.compile(
        rf"\b({tables.manufacturer_pattern})\s+([A-Za-z0-9][A-Za-z0-9-]*)", re.IGNORECASE
    )
    for match in regex.finditer(text):
        model = match.group(2)
        if model.lower() in _MODEL_STOPWORDS:
            continue
        make_key = re.sub(r"\s+", " ", match.group(1).lower())
        make = tables.canonical_makes.get(make_key, match.group(1))
        return MakeModelMatch(make, model, match.start())
    return None


MAKE_MODEL_STRATEGIES: tuple[Strategy[MakeModelMatch], ...] = (
    make_model_from_table,
    make_model_from_manufacturer,
)


# ── Year strategies ─────────────────────────────────────────────────


def _max_model_year() -> int:
    return datetime.now(timezone.utc).year + 1


def year_before_make(text: str, start: int | None) -> int | None:
    if start is None:
        return None
    match = _YEAR_BEFORE_RE.search(text[:start])
    if match is None:
        return None
    year = int(match.group(1))
    return year if year <= _max_model_year() else None


def highest_year_mentioned(text: str) -> int | None:
    years = [int(y) for y in _YEAR_RE.findall(text)]
    years = [y for y in years if y <= _max_model_year()]
    return max(years) if years else None


# ── Dealer name strategies ──────────────────────────────────────────


def dealer_from_directory(text: str, tables: ExtractionTables) -> str | None:
    for dealer in tables.known_dealers:
        pattern = re.escape(dealer.name).replace(r"\ ", r"\s+")
        if re.search(rf"\b{pattern}\b", text, re.IGNORECASE):
            return dealer.name
    return None


def dealer_make_of_city(text: str, tables: ExtractionTables) -> str | None:
    match = re.search(rf"\b(?:{tables.manufacturer_pattern})\s+of\s+{_CITY}", text)
    return match.group(0) if match else None


def dealer_words_with_make(text: str, tables: ExtractionTables) -> str | None:
    regex = re.compile(
        rf"(?:{_WORD}\s+){{1,3}}(?:{tables.manufacturer_pattern})(?:\s+of\s+{_CITY})?\b"
    )
    for match in regex.finditer(text):
        name = match.group(0).strip()
        if _plausible_dealer_name(name):
            return name
    return None


def dealer_words_with_keyword(text: str, tables: ExtractionTables) -> str | None:
    regex = re.compile(
        rf"(?:{_WORD}\s+){{1,3}}(?:{tables.dealer_keyword_pattern})(?:\s+{_WORD}){{0,2}}\b"
    )
    for match in regex.finditer(text):
        name = match.group(0).strip()
        if _plausible_dealer_name(name):
            return name
    return None


DEALER_NAME_STRATEGIES: tuple[Strategy[str], ...] = (
    dealer_from_directory,
    dealer_make_of_city,
    dealer_words_with_make,
    dealer_words_with_keyword,
)


# ── Vehicle detail strategies ───────────────────────────────────────


def mileage_with_unit(text: str, tables: ExtractionTables) -> int | None:
    match = _MILES_RE.search(text)
    if match is None:
        return None
    mileage = int(match.group(1).replace(",", ""))
    return mileage if 0 < mileage < MAX_MILEAGE else None


def mileage_in_thousands(text: str, tables: ExtractionTables) -> int | None:
    match = _K_MILES_RE.search(text)
    if match is None:
        return None
    mileage = int(float(match.group(1)) * 1000)
    return mileage if 0 < mileage < MAX_MILEAGE else None


MILEAGE_STRATEGIES: tuple[Strategy[int], ...] = (mileage_with_unit, mileage_in_thousands)


def find_stock_number(text: str, tables: ExtractionTables = DEFAULT_TABLES) -> str | None:
    match = _STOCK_RE.search(text)
    return match.group(1) if match else None


def find_sales_rep(text: str, tables: ExtractionTables) -> str | None:
    """A listed first name (any case) that appears before some manufacturer name."""
    regex = re.compile(
        rf"\b({tables.first_name_pattern})\b(?=.*\b(?:{tables.manufacturer_pattern})\b)",
        re.DOTALL | re.IGNORECASE,
    )
    match = regex.search(text)
    return tables.canonical_first_names[match.group(1).lower()] if match else None


def find_trim(text: str, tables: ExtractionTables) -> str | None:
    match = re.search(rf"\b({tables.trim_pattern})\b", text)
    return match.group(1) if match else None


def find_interior_color(text: str, tables: ExtractionTables) -> str | None:
    match = re.search(r"\binterior(?:\s+colou?r)?\s*[:\-]?\s*([A-Za-z]+)", text, re.IGNORECASE)
    return match.group(1).capitalize() if match else None


def labeled_exterior_color(text: str, tables: ExtractionTables) -> str | None:
    match = re.search(
        r"(?<!interior )\b(?:exterior(?:\s+colou?r)?|colou?r)\s*[:\-]\s*([A-Za-z]+)",
        text,
        re.IGNORECASE,
    )
    return match.group(1).capitalize() if match else None


def listed_color(text: str, tables: ExtractionTables) -> str | None:
    match = re.search(rf"\b({tables.color_pattern})\b", text)
    return match.group(1) if match else None


EXTERIOR_COLOR_STRATEGIES: tuple[Strategy[str], ...] = (labeled_exterior_color, listed_color)


def find_condition(text: str, tables: ExtractionTables) -> str:
    if _CERTIFIED_RE.search(text):
        return "certified"
    new_re = re.compile(
        rf"\bbrand[-\s]new\b|\bnew\s+(?:(?:19|20)\d{{2}}\s+)?(?i:{tables.manufacturer_pattern})\b",
        re.IGNORECASE,
    )
    if new_re.search(text):
        return "new"
    return "used"


# ── Pipeline ────────────────────────────────────────────────────────


@dataclass
class _State:
    text: str
    tables: ExtractionTables
    result: ExtractionResult
    make_start: int | None = None


def _step_vin(state: _State) -> None:
    vin = find_vin(state.text)
    if vin:
        state.result.vehicle.vin = vin
        state.result.vehicle.year = decode_model_year(vin, state.tables)


def _step_make_model(state: _State) -> None:
    match = first_hit(MAKE_MODEL_STRATEGIES, state.text, state.tables)
    if match is None:
        return
    state.result.vehicle.make = match.make
    state.result.vehicle.model = match.model
    state.make_start = match.start


def _step_year(state: _State) -> None:
    stated = year_before_make(state.text, state.make_start)
    if stated is not None:
        state.result.vehicle.year = stated
    elif state.result.vehicle.year is None:
        state.result.vehicle.year = highest_year_mentioned(state.text)


def _step_sales_rep(state: _State) -> None:
    rep = find_sales_rep(state.text, state.tables)
    if rep:
        state.result.dealer.sales_rep_name = rep


def _step_dealer_name(state: _State) -> None:
    name = first_hit(DEALER_NAME_STRATEGIES, state.text, state.tables)
    if name and _plausible_dealer_name(name):
        state.result.dealer.name = name


def _step_known_dealer(state: _State) -> None:
    dealer = state.result.dealer
    known = state.tables.find_known_dealer(dealer.name) if dealer.name else None
    if known is None:
        return
    for attr in ("name", "contact_email", "phone", "address", "website"):
        value = getattr(known, attr)
        if value:
            setattr(dealer, attr, value)


def _step_email(state: _State) -> None:
    email = find_dealer_email(state.text, state.tables)
    if email:
        state.result.dealer.contact_email = email


def _step_phone(state: _State) -> None:
    phone = find_phone(state.text)
    if phone:
        state.result.dealer.phone = phone


def _step_pricing(state: _State) -> None:
    prices = prices_in_range(find_dollar_amounts(state.text), CONVERSATION_PRICE_RANGE)
    asking = pick_asking_price(prices)
    state.result.pricing.asking_price = asking
    distinct = sorted(set(prices))
    if len(distinct) > 1:
        state.result.pricing.current_offer = distinct[0]


def _step_mileage(state: _State) -> None:
    state.result.vehicle.mileage = first_hit(MILEAGE_STRATEGIES, state.text, state.tables)


def _step_stock(state: _State) -> None:
    state.result.vehicle.stock_number = find_stock_number(state.text, state.tables) or ""


def _step_details(state: _State) -> None:
    vehicle = state.result.vehicle
    vehicle.trim = find_trim(state.text, state.tables) or ""
    vehicle.interior_color = find_interior_color(state.text, state.tables) or ""
    vehicle.exterior_color = first_hit(EXTERIOR_COLOR_STRATEGIES, state.text, state.tables) or ""
    vehicle.condition = find_condition(state.text, state.tables)


def _always(state: _State) -> bool:
    return True


def _dealer_field_unset(attr: str) -> Callable[[_State], bool]:
    """Hint and directory values are never replaced by text matches."""

    def predicate(state: _State) -> bool:
        return not getattr(state.result.dealer, attr)

    return predicate


PIPELINE: tuple[tuple[str, Callable[[_State], bool], Callable[[_State], None]], ...] = (
    ("vin", _always, _step_vin),
    ("make_model", _always, _step_make_model),
    ("year", _always, _step_year),
    ("sales_rep", _always, _step_sales_rep),
    ("dealer_name", _always, _step_dealer_name),
    ("known_dealer", _always, _step_known_dealer),
    ("email", _dealer_field_unset("contact_email"), _step_email),
    ("phone", _dealer_field_unset("phone"), _step_phone),
    ("pricing", _always, _step_pricing),
    ("mileage", _always, _step_mileage),
    ("stock_number", _always, _step_stock),
    ("details", _always, _step_details),
)


def extract_from_conversation(
    text: str,
    dealer_hint: dict[str, Any] | None = None,
    *,
    tables: ExtractionTables = DEFAULT_TABLES,
) -> ExtractionResult:
    """Best-effort ``{vehicle, dealer, pricing}`` record from conversation text."""
    state = _State(
        text=text or "",
        tables=tables,
        result=ExtractionResult(dealer=ExtractedDealer.from_hint(dealer_hint)),
    )
    for name, applies, step in PIPELINE:
        if applies(state):
            step(state)
            logger.debug("extraction step %s done", name)
    return state.result


def build_conversation_text(messages: Iterable[dict[str, Any]]) -> str:
    """Join a message thread as ``DEALER:``/``CUSTOMER:`` blocks."""
    blocks = []
    for message in messages:
        speaker = "DEALER" if message.get("direction") == "inbound" else "CUSTOMER"
        blocks.append(f"{speaker}: {message.get('content') or ''}")
    return "\n\n".join(blocks)
