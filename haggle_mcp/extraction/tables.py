"""Immutable pattern tables consumed by the extraction engines.

Manufacturer lists, first names, the known-dealer directory, and the email
denylist are static configuration.  Extractors receive an
:class:`ExtractionTables` instance (``DEFAULT_TABLES`` unless a caller injects
its own) and never mutate it.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class KnownDealer:
    """Canonical contact record for a dealer in the curated directory."""

    name: str
    contact_email: str = ""
    phone: str = ""
    address: str = ""
    website: str = ""
    domains: tuple[str, ...] = ()


MANUFACTURERS: tuple[str, ...] = (
    "Toyota", "Honda", "Ford", "Chevrolet", "Chevy", "Nissan", "Hyundai", "Kia",
    "BMW", "Mercedes-Benz", "Mercedes", "Audi", "Lexus", "Acura", "Infiniti",
    "Cadillac", "Buick", "GMC", "Ram", "Dodge", "Jeep", "Chrysler", "Subaru",
    "Mazda", "Mitsubishi", "Volvo", "Jaguar", "Land Rover", "Porsche", "Tesla",
    "Genesis", "Volkswagen", "Lincoln", "Alfa Romeo", "Mini", "Fiat", "Rivian",
    "Lucid", "Polestar", "Maserati",
)

MAKE_MODELS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "Toyota": (
        "Tundra", "Tacoma", "Camry", "Corolla", "RAV4", "Highlander", "4Runner",
        "Sienna", "Prius", "Sequoia", "Land Cruiser", "Grand Highlander",
    ),
    "Honda": ("Civic", "Accord", "CR-V", "HR-V", "Pilot", "Odyssey", "Ridgeline", "Passport"),
    "Ford": (
        "F-150", "F-250", "Mustang Mach-E", "Mustang", "Explorer", "Escape",
        "Bronco Sport", "Bronco", "Ranger", "Expedition", "Maverick", "Edge",
    ),
    "Chevrolet": (
        "Silverado", "Tahoe", "Suburban", "Equinox", "Malibu", "Camaro",
        "Corvette", "Traverse", "Colorado", "Blazer", "Trax",
    ),
    "Nissan": ("Altima", "Sentra", "Rogue", "Pathfinder", "Frontier", "Titan", "Murano", "Maxima"),
    "Hyundai": ("Elantra", "Sonata", "Tucson", "Santa Fe", "Palisade", "Kona", "Ioniq 5"),
    "Kia": ("Telluride", "Sorento", "Sportage", "Forte", "K5", "Soul", "EV6"),
    "Subaru": ("Outback", "Forester", "Crosstrek", "Ascent", "WRX", "Impreza"),
    "Mazda": ("CX-5", "CX-50", "CX-30", "CX-90", "CX-9", "Mazda3", "MX-5"),
    "Jeep": ("Grand Cherokee", "Cherokee", "Wrangler", "Gladiator", "Compass"),
    "Ram": ("1500", "2500", "3500"),
    "GMC": ("Sierra", "Yukon", "Acadia", "Canyon", "Terrain"),
    "Tesla": ("Model 3", "Model Y", "Model S", "Model X", "Cybertruck"),
    "Lexus": ("RX", "ES", "NX", "GX", "IS", "TX"),
    "BMW": ("X3", "X5", "X7", "3 Series", "5 Series"),
    "Audi": ("Q5", "Q7", "A4", "A6", "Q3"),
    "Acura": ("MDX", "RDX", "TLX", "Integra"),
})

FIRST_NAMES: tuple[str, ...] = (
    "Brian", "Sarah", "Mike", "Jennifer", "John", "David", "Lisa", "Karen",
    "Steve", "Mark", "Chris", "Amy", "Tom", "Jessica", "Kevin", "Michelle",
    "Robert", "Linda", "James", "Patricia", "Michael", "Barbara", "William",
    "Elizabeth", "Richard", "Maria", "Joseph", "Susan", "Thomas", "Margaret",
    "Charles", "Dorothy", "Daniel", "Nancy", "Matthew", "Betty", "Anthony",
    "Helen", "Donald", "Sandra", "Paul", "Donna", "Joshua", "Carol", "Kenneth",
    "Ruth", "Andrew", "Sharon", "Ryan", "Gary", "Laura", "Nicholas",
    "Kimberly", "Eric", "Deborah", "Stephen", "Jonathan", "Larry", "Justin",
    "Scott", "Brandon", "Benjamin", "Samuel", "Gregory", "Frank", "Raymond",
    "Alexander", "Patrick", "Jack", "Dennis", "Jerry",
)

KNOWN_DEALERS: tuple[KnownDealer, ...] = (
    KnownDealer(
        name="Toyota of Cedar Park",
        contact_email="sales@toyotaofcedarpark.com",
        phone="(512) 778-0711",
        address="5600 183A Toll Rd, Cedar Park, TX 78641",
        website="https://www.toyotaofcedarpark.com",
        domains=("toyotaofcedarpark.com",),
    ),
)

PUBLIC_EMAIL_DOMAINS: frozenset[str] = frozenset({
    "gmail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "aol.com",
    "icloud.com",
    "live.com",
    "msn.com",
    "me.com",
    "protonmail.com",
})

DEALER_KEYWORDS: tuple[str, ...] = ("Auto", "Motors", "Automotive", "Dealership", "Cars")

TRIM_KEYWORDS: tuple[str, ...] = (
    "Limited", "Platinum", "Premium", "Luxury", "Sport", "Base", "SR5", "TRD",
    "XLE", "XSE", "LE", "SE", "SEL", "XLT", "Lariat", "EX-L", "EX", "LX",
    "Touring", "Denali", "Hybrid",
)

COLORS: tuple[str, ...] = (
    "Red", "Blue", "White", "Black", "Silver", "Gray", "Grey", "Green",
    "Yellow", "Orange", "Purple", "Brown", "Gold", "Beige", "Tan", "Maroon",
    "Navy", "Burgundy", "Charcoal", "Pearl",
)

# World manufacturer identifiers (first three VIN characters) we trust for
# model-year decoding.
WMI_TO_MAKE: Mapping[str, str] = MappingProxyType({
    "1HG": "Honda",
    "2HG": "Honda",
    "5FN": "Honda",
    "1FT": "Ford",
    "1FA": "Ford",
    "1FM": "Ford",
    "3FA": "Ford",
    "1C4": "Chrysler",
    "1G1": "Chevrolet",
    "1GC": "Chevrolet",
    "3GN": "Chevrolet",
    "1G6": "Cadillac",
    "1GT": "GMC",
    "2T1": "Toyota",
    "2T3": "Toyota",
    "4T1": "Toyota",
    "4T3": "Toyota",
    "5TD": "Toyota",
    "5TF": "Toyota",
    "JTD": "Toyota",
    "JTE": "Toyota",
    "JTM": "Toyota",
    "5YJ": "Tesla",
    "7SA": "Tesla",
    "JN1": "Nissan",
    "1N4": "Nissan",
    "KM8": "Hyundai",
    "5NP": "Hyundai",
    "KND": "Kia",
    "JF1": "Subaru",
    "JF2": "Subaru",
    "JM1": "Mazda",
    "JM3": "Mazda",
    "1C6": "Ram",
    "SAL": "Land Rover",
    "WAU": "Audi",
    "WBA": "BMW",
    "WDC": "Mercedes-Benz",
})

VIN_YEAR_CODES = "ABCDEFGHJKLMNPRSTVWXY123456789"


def _alternation(values: tuple[str, ...] | list[str]) -> str:
    # Longest first so "Mercedes-Benz" wins over "Mercedes".
    ordered = sorted(values, key=len, reverse=True)
    return "|".join(re.escape(v).replace(r"\ ", r"\s+") for v in ordered)


@dataclass(frozen=True)
class ExtractionTables:
    """Static lookup data for conversation and listing extraction."""

    manufacturers: tuple[str, ...] = MANUFACTURERS
    make_models: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MAKE_MODELS)
    first_names: tuple[str, ...] = FIRST_NAMES
    known_dealers: tuple[KnownDealer, ...] = KNOWN_DEALERS
    public_email_domains: frozenset[str] = PUBLIC_EMAIL_DOMAINS
    own_email_domain: str = "hagglehub.app"
    dealer_keywords: tuple[str, ...] = DEALER_KEYWORDS
    trim_keywords: tuple[str, ...] = TRIM_KEYWORDS
    colors: tuple[str, ...] = COLORS
    wmi_to_make: Mapping[str, str] = field(default_factory=lambda: WMI_TO_MAKE)

    # ── Compiled patterns ───────────────────────────────────────────

    @cached_property
    def manufacturer_pattern(self) -> str:
        return _alternation(self.manufacturers)

    @cached_property
    def make_model_patterns(self) -> tuple[tuple[str, re.Pattern[str], dict[str, str]], ...]:
        """One ``(make, regex, lowercased-model -> canonical)`` triple per table entry."""
        compiled = []
        for make, models in self.make_models.items():
            regex = re.compile(
                rf"\b({_alternation([make])})\s+({_alternation(list(models))})(?![\w-])",
                re.IGNORECASE,
            )
            canonical = {re.sub(r"\s+", " ", m.lower()): m for m in models}
            compiled.append((make, regex, canonical))
        return tuple(compiled)

    @cached_property
    def canonical_makes(self) -> dict[str, str]:
        return {m.lower(): m for m in self.manufacturers}

    @cached_property
    def first_name_pattern(self) -> str:
        return _alternation(list(dict.fromkeys(self.first_names)))

    @cached_property
    def canonical_first_names(self) -> dict[str, str]:
        return {n.lower(): n for n in self.first_names}

    @cached_property
    def trim_pattern(self) -> str:
        return _alternation(self.trim_keywords)

    @cached_property
    def color_pattern(self) -> str:
        return _alternation(self.colors)

    @cached_property
    def dealer_keyword_pattern(self) -> str:
        return _alternation(self.dealer_keywords)

    def excluded_email_domains(self) -> frozenset[str]:
        own = self.own_email_domain.strip().lower()
        return self.public_email_domains | ({own} if own else frozenset())

    def find_known_dealer(self, name: str) -> KnownDealer | None:
        """Directory entry whose name appears (case-insensitively) inside ``name``."""
        lowered = name.lower()
        for dealer in self.known_dealers:
            if dealer.name.lower() in lowered:
                return dealer
        return None

    def known_dealer_for_host(self, hostname: str) -> KnownDealer | None:
        host = hostname.lower()
        for dealer in self.known_dealers:
            if any(host == d or host.endswith("." + d) for d in dealer.domains):
                return dealer
        return None


def tables_from_env() -> ExtractionTables:
    """Default tables with the own-domain exclusion taken from the environment."""
    own_domain = os.environ.get("HAGGLEHUB_INBOUND_DOMAIN", "hagglehub.app")
    if own_domain == DEFAULT_TABLES.own_email_domain:
        return DEFAULT_TABLES
    return ExtractionTables(own_email_domain=own_domain)


DEFAULT_TABLES = ExtractionTables()
