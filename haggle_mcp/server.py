"""HaggleHub MCP server: FastMCP entry point for the negotiation core."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from cip_protocol import CIP
from cip_protocol.orchestration.errors import (
    log_and_return_tool_error as _log_and_return_tool_error,
)
from cip_protocol.orchestration.pool import ProviderPool
from cip_protocol.scaffold.loader import load_scaffold_directory
from cip_protocol.scaffold.registry import ScaffoldRegistry
from mcp.server.fastmcp import FastMCP

from haggle_mcp.config import HAGGLEHUB_DOMAIN_CONFIG
from haggle_mcp.insights.service import CIPDealAnalyzer, DealAnalyzer
from haggle_mcp.pricing.conversion import DealNotFoundError, FeesRequiredError
from haggle_mcp.tools.inbox import receive_email_impl
from haggle_mcp.tools.insights import analyze_deals_impl, check_insight_triggers_impl
from haggle_mcp.tools.parsing import parse_conversation_impl, parse_vehicle_url_impl
from haggle_mcp.tools.pricing import (
    apply_manual_fees_impl,
    calculate_fees_impl,
    refresh_deal_fees_impl,
    set_negotiation_mode_impl,
    update_deal_price_impl,
)

# Load .env from project root (no extra dependency)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
if _ENV_FILE.is_file():
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())

mcp = FastMCP("HaggleHub")
logger = logging.getLogger(__name__)

_SCAFFOLD_DIR = str(Path(__file__).parent / "scaffolds")

# Rejections callers can act on; returned as plain messages, not tool errors.
_CALLER_ERRORS = (ValueError, DealNotFoundError, FeesRequiredError)

_pool: ProviderPool | None = None
_analyzer_override: DealAnalyzer | None = None
_scaffold_registry_ref: ScaffoldRegistry | None = None


def _get_pool() -> ProviderPool:
    """Lazy provider pool accessor; scaffolds load on first LLM-backed call."""
    global _pool  # noqa: PLW0603
    if _pool is None:
        _pool = ProviderPool(HAGGLEHUB_DOMAIN_CONFIG, _SCAFFOLD_DIR)
    return _pool


def _get_scaffold_registry() -> ScaffoldRegistry:
    global _scaffold_registry_ref  # noqa: PLW0603
    if _scaffold_registry_ref is None:
        reg = ScaffoldRegistry()
        load_scaffold_directory(_SCAFFOLD_DIR, reg)
        _scaffold_registry_ref = reg
    return _scaffold_registry_ref


@mcp.resource("hagglehub://scaffolds/catalog")
def scaffold_catalog_resource() -> dict[str, Any]:
    """List available scaffold_id values with routing hints for orchestrators."""
    scaffolds = sorted(_get_scaffold_registry().all(), key=lambda s: s.id)
    entries = [
        {
            "id": s.id,
            "display_name": s.display_name,
            "description": s.description,
            "tools": list(s.applicability.tools or []),
            "tags": list(s.tags or []),
        }
        for s in scaffolds
    ]
    return {
        "domain": HAGGLEHUB_DOMAIN_CONFIG.name,
        "default_scaffold_id": HAGGLEHUB_DOMAIN_CONFIG.default_scaffold_id,
        "count": len(entries),
        "scaffolds": entries,
    }


def set_cip_override(cip: CIP | None) -> None:
    """Inject a CIP instance (e.g. with MockProvider) for testing."""
    _get_pool().set_override(cip)


def set_analyzer_override(analyzer: DealAnalyzer | None) -> None:
    """Inject a deal analyzer for testing; bypasses CIP entirely."""
    global _analyzer_override  # noqa: PLW0603
    _analyzer_override = analyzer


def _prepare_cip_orchestration(
    *,
    tool_name: str,
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
) -> tuple[CIP, str | None, str | None, str | None]:
    return _get_pool().prepare_orchestration(
        tool_name=tool_name,
        provider=provider,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
    )


def _resolve_analyzer(
    *,
    tool_name: str,
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
) -> DealAnalyzer:
    if _analyzer_override is not None:
        return _analyzer_override
    cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
        _prepare_cip_orchestration(
            tool_name=tool_name,
            provider=provider,
            scaffold_id=scaffold_id or "analyze_deals",
            policy=policy,
            context_notes=context_notes,
        )
    )
    return CIPDealAnalyzer(
        cip,
        scaffold_id=resolved_scaffold_id,
        policy=resolved_policy,
        context_notes=resolved_context_notes,
    )


# ── Tool registrations ──────────────────────────────────────────────


@mcp.tool()
def set_llm_provider(provider: str, model: str = "") -> str:
    """Set the default LLM provider used for deal analysis.

    provider: 'anthropic' or 'openai'
    model: optional model override
    """
    try:
        return _get_pool().set_provider(provider, model)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="set_llm_provider",
            exc=exc,
            user_message=f"Failed to switch to {provider}: check API key is set.",
        )


@mcp.tool()
def get_llm_provider() -> str:
    """Return current default provider/model and initialized provider pool details."""
    return _get_pool().get_info()


@mcp.tool()
def parse_conversation(
    conversation: str = "",
    messages: list[dict[str, Any]] | None = None,
    dealer_info: dict[str, Any] | None = None,
    user_id: str = "",
    create_deal: bool = False,
    zip_code: str = "",
) -> str:
    """Extract vehicle, dealer, and pricing details from a dealer conversation.

    Pass raw text as conversation, or a message thread as messages
    (each with direction 'inbound'/'outbound' and content). Set create_deal
    to persist a new deal for user_id.
    """
    try:
        return parse_conversation_impl(
            conversation=conversation,
            messages=messages,
            dealer_info=dealer_info,
            user_id=user_id,
            create_deal=create_deal,
            zip_code=zip_code,
        )
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="parse_conversation",
            exc=exc,
            user_message=(
                "I am having trouble parsing that conversation right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def parse_vehicle_url(
    url: str,
    user_id: str = "",
    create_deal: bool = False,
    zip_code: str = "",
) -> str:
    """Fetch a vehicle listing page and extract vehicle, dealer, and price."""
    try:
        return await parse_vehicle_url_impl(
            url,
            user_id=user_id,
            create_deal=create_deal,
            zip_code=zip_code,
        )
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="parse_vehicle_url",
            exc=exc,
            user_message=(
                "I am having trouble reading that listing right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def calculate_fees(sales_price: float | None = None, zip_code: str = "") -> str:
    """Estimate sales tax, registration, doc, and title fees for a price and zip code."""
    try:
        return calculate_fees_impl(sales_price=sales_price, zip_code=zip_code)
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="calculate_fees",
            exc=exc,
            user_message=(
                "I am having trouble calculating fees right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def set_negotiation_mode(deal_id: str, mode: str) -> str:
    """Switch a deal between 'sales_price' and 'otd' negotiation.

    The deal must already have a fee breakdown (see refresh_deal_fees).
    """
    try:
        return set_negotiation_mode_impl(deal_id=deal_id, mode=mode)
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="set_negotiation_mode",
            exc=exc,
            user_message=(
                "I am having trouble switching the negotiation mode right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def update_deal_price(deal_id: str, field: str, value: float | None = None) -> str:
    """Edit asking_price, current_offer, or target_price in the deal's current mode."""
    try:
        return update_deal_price_impl(deal_id=deal_id, field=field, value=value)
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="update_deal_price",
            exc=exc,
            user_message=(
                "I am having trouble updating that price right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def refresh_deal_fees(deal_id: str, zip_code: str = "", force: bool = False) -> str:
    """Recalculate and store a deal's fee breakdown from its zip code."""
    try:
        return refresh_deal_fees_impl(deal_id=deal_id, zip_code=zip_code, force=force)
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="refresh_deal_fees",
            exc=exc,
            user_message=(
                "I am having trouble recalculating fees right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def apply_manual_fees(
    deal_id: str,
    sales_tax: float,
    registration_fee: float = 0.0,
    doc_fee: float = 0.0,
    title_fee: float = 0.0,
) -> str:
    """Store fees quoted by the dealer; automatic recalculation stops for this deal."""
    try:
        return apply_manual_fees_impl(
            deal_id=deal_id,
            sales_tax=sales_tax,
            registration_fee=registration_fee,
            doc_fee=doc_fee,
            title_fee=title_fee,
        )
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="apply_manual_fees",
            exc=exc,
            user_message=(
                "I am having trouble saving those fees right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
def receive_email(sender: str, recipient: str, subject: str = "", body: str = "") -> str:
    """Record an inbound dealer email sent to a deals-<user>@ address."""
    try:
        return receive_email_impl(
            sender=sender, recipient=recipient, subject=subject, body=body
        )
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="receive_email",
            exc=exc,
            user_message=(
                "I am having trouble recording that email right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def check_insight_triggers(
    user_id: str,
    dry_run: bool = False,
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
) -> str:
    """Run deal analysis automatically when a quote is expiring/expired or a deal went stale."""
    try:
        analyzer = _resolve_analyzer(
            tool_name="check_insight_triggers",
            provider=provider,
            scaffold_id=scaffold_id,
            policy=policy,
            context_notes=context_notes,
        )
        return await check_insight_triggers_impl(analyzer, user_id=user_id, dry_run=dry_run)
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="check_insight_triggers",
            exc=exc,
            user_message=(
                "I am having trouble checking your deals right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def analyze_deals(
    user_id: str,
    force_refresh: bool = False,
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
) -> str:
    """Summarize the user's active deals with prioritized insights (cached for 12 hours)."""
    try:
        analyzer = _resolve_analyzer(
            tool_name="analyze_deals",
            provider=provider,
            scaffold_id=scaffold_id,
            policy=policy,
            context_notes=context_notes,
        )
        return await analyze_deals_impl(
            analyzer, user_id=user_id, force_refresh=force_refresh
        )
    except _CALLER_ERRORS as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="analyze_deals",
            exc=exc,
            user_message=(
                "I am having trouble analyzing your deals right now. "
                "Please try again in a moment."
            ),
        )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    mcp.run()
