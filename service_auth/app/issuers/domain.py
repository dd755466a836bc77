"""
Domain key extraction for issuer routing.
"""

import re

_PROTOCOL_AND_DOMAIN = re.compile(r"^\w+://[^/]+", re.IGNORECASE)


def extract_domain_key(raw_url: str) -> str:
    """Return the lowercase ``scheme://host`` prefix of ``raw_url``.

    Best effort: when no prefix matches, the input is returned unchanged, so
    callers must tolerate keys that are not scheme+host shaped.
    """
    match = _PROTOCOL_AND_DOMAIN.match(raw_url)
    if match:
        return match.group(0).lower()
    return raw_url
