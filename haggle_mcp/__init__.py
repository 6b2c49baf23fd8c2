"""HaggleHub negotiation core: extraction, price sync, fee resolution, insight gating."""
