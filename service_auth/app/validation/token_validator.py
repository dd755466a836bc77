"""
Token validation service for Auth service.
"""

from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import JOSEError, JWTError
from pydantic import BaseModel

from shared.errors import AuthenticationError, NoIssuerConfigured, VerificationUnavailable
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from ..issuers.context import get_issuer_domain, set_issuer_domain
from ..issuers.manager import IssuerManager


class TokenVerificationRequest(BaseModel):
    """Request model for token verification."""
    token: str


class TokenVerificationResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    claims: Optional[Dict[str, Any]] = None
    issuer: Optional[str] = None
    error: Optional[str] = None


class TokenValidator:
    """Verify tokens against the key set of the issuer that governs them."""

    def __init__(self, issuer_manager: IssuerManager, metrics: Optional[MetricsCollector] = None):
        self.issuer_manager = issuer_manager
        self.metrics = metrics
        self.logger = get_logger("auth.validator")

    async def verify_token(self, token: str) -> TokenVerificationResponse:
        """Verify a JWT token. Any failure rejects the token."""
        if token.startswith("Bearer "):
            token = token[7:]

        try:
            claims, issuer_url = await self._verify(token)
        except (AuthenticationError, VerificationUnavailable, NoIssuerConfigured) as e:
            self.logger.warning("Token verification failed", code=e.code, error=e.message)
            self._record("invalid")
            return TokenVerificationResponse(valid=False, error=e.message)

        self.logger.info(
            "Token verified successfully",
            sub=claims.get("sub"),
            issuer=issuer_url
        )
        set_user_context(user_id=claims.get("sub"))
        self._record("valid")
        return TokenVerificationResponse(valid=True, claims=claims, issuer=issuer_url)

    async def _verify(self, token: str):
        try:
            header = jwt.get_unverified_header(token)
            unverified_claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise AuthenticationError("Malformed token", details={"error": str(e)}) from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise AuthenticationError("Token missing key ID")

        token_issuer = unverified_claims.get("iss")
        if get_issuer_domain() is None and isinstance(token_issuer, str):
            set_issuer_domain(token_issuer)

        issuer = self.issuer_manager.resolve()
        key_set = await issuer.get_verification_capability()
        key_data = key_set.find(kid)
        if key_data is None:
            # Key might be rotated; refresh once more eagerly.
            key_set = await issuer.force_refresh()
            key_data = key_set.find(kid)
        if key_data is None:
            raise AuthenticationError(f"Key not found: {kid}", details={"kid": kid, "issuer": issuer.issuer_url})

        try:
            claims = jwt.decode(
                token,
                dict(key_data),
                algorithms=[key_data.get("alg") or "RS256"],
                issuer=token_issuer if isinstance(token_issuer, str) else None,
                options={"verify_exp": True, "verify_aud": False}
            )
        except JOSEError as e:
            raise AuthenticationError(f"Token verification failed: {e}", details={"kid": kid}) from e

        return claims, issuer.issuer_url

    async def extract_claims(self, token: str) -> Dict[str, Any]:
        """Extract claims from a valid token."""
        response = await self.verify_token(token)

        if not response.valid:
            raise AuthenticationError(
                f"Invalid token: {response.error}",
                details={"token_error": response.error}
            )

        return response.claims

    async def get_user_info(self, token: str) -> Dict[str, Any]:
        """Get user information from token claims."""
        claims = await self.extract_claims(token)
        return self.user_info_from_claims(claims)

    @staticmethod
    def user_info_from_claims(claims: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "user_id": claims.get("sub"),
            "issuer": claims.get("iss"),
            "email": claims.get("email"),
            "username": claims.get("preferred_username"),
            "roles": (claims.get("realm_access") or {}).get("roles", []),
            "client_roles": claims.get("resource_access") or {},
            "exp": claims.get("exp"),
            "iat": claims.get("iat")
        }

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("token_validations_total", status=status)
