"""Reference zip-code tax rows loaded into a fresh store."""

from __future__ import annotations

import logging

from haggle_mcp.data.store import RecordStore

logger = logging.getLogger(__name__)

# (zip, state, city, sales_tax_rate, registration_base_fee, doc_fee_average, title_fee)
ZIP_TAX_RATES: tuple[tuple[str, str, str, float, float, float, float], ...] = (
    ("78641", "TX", "Cedar Park", 0.0825, 75.0, 150.0, 33.0),
    ("78613", "TX", "Cedar Park", 0.0825, 75.0, 150.0, 33.0),
    ("78701", "TX", "Austin", 0.0825, 75.0, 150.0, 33.0),
    ("78664", "TX", "Round Rock", 0.0825, 75.0, 150.0, 33.0),
    ("75201", "TX", "Dallas", 0.0825, 75.0, 150.0, 33.0),
    ("77002", "TX", "Houston", 0.0825, 75.0, 150.0, 33.0),
    ("90210", "CA", "Beverly Hills", 0.095, 350.0, 85.0, 25.0),
    ("94103", "CA", "San Francisco", 0.08625, 350.0, 85.0, 25.0),
    ("10001", "NY", "New York", 0.08875, 175.0, 175.0, 50.0),
    ("60601", "IL", "Chicago", 0.1025, 151.0, 358.0, 165.0),
    ("85004", "AZ", "Phoenix", 0.086, 250.0, 499.0, 4.0),
    ("33101", "FL", "Miami", 0.07, 225.0, 999.0, 85.0),
    ("98101", "WA", "Seattle", 0.1035, 300.0, 200.0, 35.0),
    ("80202", "CO", "Denver", 0.0881, 200.0, 599.0, 7.2),
    ("97201", "OR", "Portland", 0.0, 240.0, 150.0, 101.0),
)


def seed_zip_tax_rates(store: RecordStore) -> int:
    """Insert reference rows whose zip is not already present.  Returns rows added."""
    added = 0
    for zip_code, state, city, rate, registration, doc, title in ZIP_TAX_RATES:
        if store.filter("zip_tax_rates", {"zip_code": zip_code}):
            continue
        store.create("zip_tax_rates", {
            "zip_code": zip_code,
            "state": state,
            "city": city,
            "sales_tax_rate": rate,
            "registration_base_fee": registration,
            "doc_fee_average": doc,
            "title_fee": title,
        })
        added += 1
    if added:
        logger.info("Seeded %d zip tax reference rows", added)
    return added
