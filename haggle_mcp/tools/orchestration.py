"""CIP routing helper for tool implementations that call an LLM."""

from __future__ import annotations

from typing import Any, Iterable

from cip_protocol import CIP


def build_cross_domain_context(
    context_notes: str | None, trigger_events: Iterable[str] = ()
) -> dict[str, Any] | None:
    """Orchestrator notes plus the trigger events that caused an automatic run."""
    context: dict[str, Any] = {}
    notes = (context_notes or "").strip()
    if notes:
        context["orchestrator_notes"] = notes
    events = sorted(set(trigger_events))
    if events:
        context["trigger_events"] = events
    return context or None


async def run_tool_with_orchestration(
    cip: CIP,
    *,
    user_input: str,
    tool_name: str,
    data_context: dict[str, Any],
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    trigger_events: Iterable[str] = (),
) -> str:
    result = await cip.run(
        user_input,
        tool_name=tool_name,
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        cross_domain_context=build_cross_domain_context(context_notes, trigger_events),
    )
    return result.response.content
