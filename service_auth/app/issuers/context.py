"""
Request-scoped issuer domain hint.

The hint is attached by upstream request handling (middleware, token
inspection) and only read by issuer resolution.
"""

from contextvars import Context
from typing import Optional

from shared.logging import issuer_domain_var


def set_issuer_domain(issuer_domain: Optional[str]) -> None:
    """Attach the issuer domain hint to the current context."""
    issuer_domain_var.set(issuer_domain or None)


def get_issuer_domain(ctx: Optional[Context] = None) -> Optional[str]:
    """Read the issuer domain hint from ``ctx`` or the current context."""
    if ctx is not None:
        value = ctx.get(issuer_domain_var)
    else:
        value = issuer_domain_var.get()
    if isinstance(value, str) and value:
        return value
    return None


def clear_issuer_domain() -> None:
    issuer_domain_var.set(None)
