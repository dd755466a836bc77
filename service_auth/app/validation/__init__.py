"""
Token validation package.

Verifies JWTs against the key set of the issuer resolved for the request:
signature, expiry and issuer claim. Any failure to obtain usable keys
rejects the token.
"""
