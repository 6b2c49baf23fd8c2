"""Inbound dealer email tool implementation."""

from __future__ import annotations

import json

from haggle_mcp.data.registry import get_store
from haggle_mcp.extraction import tables_from_env
from haggle_mcp.messaging import ingest_inbound_email


def receive_email_impl(*, sender: str, recipient: str, subject: str = "", body: str = "") -> str:
    """Store an inbound dealer email against the best-matching deal."""
    outcome = ingest_inbound_email(
        get_store(),
        sender=sender.strip().lower(),
        recipient=recipient.strip(),
        subject=subject,
        body=body,
        tables=tables_from_env(),
    )
    message = outcome["message"]
    return json.dumps(
        {
            "message_id": message["id"],
            "deal_id": outcome["deal_id"],
            "dealer_id": message["dealer_id"],
            "matched_by": outcome["matched_by"] or None,
            "contains_offer": message["contains_offer"],
            "extracted_price": message["extracted_price"],
        },
        indent=2,
    )
