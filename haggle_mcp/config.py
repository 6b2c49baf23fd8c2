"""CIP DomainConfig for the car_negotiation domain."""

from cip_protocol import DomainConfig

HAGGLEHUB_DOMAIN_CONFIG = DomainConfig(
    name="car_negotiation",
    display_name="HaggleHub Coach",
    system_prompt=(
        "You are \"The HaggleHub Coach\", a specialist analyst for car-buying "
        "negotiations. Your response is returned to an orchestrating assistant or "
        "application, not read directly by the buyer. Be concise and specific: cite "
        "the deal figures you were given (asking price, current offer, target, days "
        "since contact, days until a quote expires), prioritize time-sensitive "
        "issues, and give concrete next steps with timing and amounts. Never invent "
        "market data that was not supplied. When asked for JSON, respond with JSON only."
    ),
    default_scaffold_id="general_advice",
    data_context_label="Deal Data",
    prohibited_indicators={
        "financial_guarantees": (
            "i guarantee the dealer will accept",
            "you will definitely get this price",
            "this offer is guaranteed",
        ),
        "legal_advice": (
            "legally you should",
            "your legal rights are",
            "you should sue",
        ),
        "pressure_tactics": (
            "you need to buy this now",
            "this is the best deal you'll ever find",
        ),
    },
    regex_guardrail_policies={
        "price_promises": r"(?i)the\s+dealer\s+(?:will|must)\s+accept\s+\$?\d",
    },
    redaction_message="[Removed: contains prohibited negotiation advice]",
)
