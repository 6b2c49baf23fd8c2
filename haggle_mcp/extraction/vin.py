"""VIN scanning and lightweight model-year decoding."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from haggle_mcp.extraction.tables import DEFAULT_TABLES, VIN_YEAR_CODES, ExtractionTables

# A bare 17-char token from the VIN alphabet.  Real VINs always carry digits,
# which keeps long all-letter words out.
_VIN_SCAN_RE = re.compile(r"\b(?=[A-HJ-NPR-Z]*[0-9])[A-HJ-NPR-Z0-9]{17}\b", re.IGNORECASE)
_LABELED_VIN_RE = re.compile(
    r"\bVIN\b[\"'\s:#=-]*(?=[A-HJ-NPR-Z]*[0-9])([A-HJ-NPR-Z0-9]{17})\b", re.IGNORECASE
)


def find_vin(text: str) -> str:
    """First VIN-shaped token in document order, upper-cased; ``""`` if none."""
    match = _VIN_SCAN_RE.search(text or "")
    return match.group(0).upper() if match else ""


def find_labeled_vin(text: str) -> str:
    """A VIN introduced by a ``VIN:`` style label; ``""`` if none."""
    match = _LABELED_VIN_RE.search(text or "")
    return match.group(1).upper() if match else ""


def make_from_wmi(vin: str, tables: ExtractionTables = DEFAULT_TABLES) -> str:
    if len(vin) < 3:
        return ""
    return tables.wmi_to_make.get(vin[:3].upper(), "")


def decode_model_year(vin: str, tables: ExtractionTables = DEFAULT_TABLES) -> int | None:
    """Model year from the 10th character, only for recognized manufacturer prefixes.

    The year code cycles every 30 years; the most recent cycle that is not
    beyond next model year is chosen.
    """
    if len(vin) != 17 or not make_from_wmi(vin, tables):
        return None
    idx = VIN_YEAR_CODES.find(vin[9].upper())
    if idx == -1:
        return None
    resolved = 1980 + idx
    current_plus_one = datetime.now(timezone.utc).year + 1
    while resolved + 30 <= current_plus_one:
        resolved += 30
    if resolved > current_plus_one:
        return None
    return resolved
