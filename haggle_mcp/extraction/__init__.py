"""Conversation and listing extraction engines."""

from haggle_mcp.extraction.conversation import (
    build_conversation_text,
    extract_from_conversation,
)
from haggle_mcp.extraction.listing import extract_listing, fallback_listing
from haggle_mcp.extraction.records import (
    ExtractedDealer,
    ExtractedPricing,
    ExtractedVehicle,
    ExtractionResult,
)
from haggle_mcp.extraction.tables import DEFAULT_TABLES, ExtractionTables, tables_from_env

__all__ = [
    "DEFAULT_TABLES",
    "ExtractedDealer",
    "ExtractedPricing",
    "ExtractedVehicle",
    "ExtractionResult",
    "ExtractionTables",
    "build_conversation_text",
    "extract_from_conversation",
    "extract_listing",
    "fallback_listing",
    "tables_from_env",
]
