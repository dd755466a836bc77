"""
Issuer resolution package.

Maps each configured token issuer to its verification cache, keyed by the
lowercase ``scheme://host`` of the issuer URL, and picks the cache for a
request from the issuer-domain hint carried in the request context.
"""

from .context import clear_issuer_domain, get_issuer_domain, set_issuer_domain
from .domain import extract_domain_key
from .manager import IssuerManager

__all__ = [
    "IssuerManager",
    "clear_issuer_domain",
    "extract_domain_key",
    "get_issuer_domain",
    "set_issuer_domain",
]
