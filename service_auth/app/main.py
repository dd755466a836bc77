"""
Auth service for the Access Layer.
"""

from typing import Optional

from fastapi import Request
from jose import jwt
from jose.exceptions import JWTError

from shared.base_service import BaseService
from .issuers.context import clear_issuer_domain, set_issuer_domain
from .issuers.manager import FetcherFactory, IssuerManager
from .jwks.cache import CacheState
from .validation.token_validator import TokenValidator, TokenVerificationRequest

ISSUER_DOMAIN_HEADER = "X-Issuer-Domain"


def issuer_domain_from_request(request: Request) -> Optional[str]:
    """Pick the issuer domain hint for a request.

    An explicit ``X-Issuer-Domain`` header wins; otherwise the unverified
    ``iss`` claim of the bearer token is used.
    """
    header_value = request.headers.get(ISSUER_DOMAIN_HEADER)
    if header_value and header_value.strip():
        return header_value.strip()

    authorization = request.headers.get("Authorization", "")
    if not authorization.startswith("Bearer "):
        return None
    try:
        claims = jwt.get_unverified_claims(authorization[7:].strip())
    except JWTError:
        return None
    issuer = claims.get("iss")
    return issuer if isinstance(issuer, str) else None


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(self, *, fetcher_factory: Optional[FetcherFactory] = None, **config_overrides):
        super().__init__("auth", 8010, **config_overrides)
        # Fails startup on a malformed issuer URL
        self.issuer_manager = IssuerManager.from_config(
            self.config,
            fetcher_factory=fetcher_factory,
            metrics=self.metrics,
        )
        self.token_validator = TokenValidator(self.issuer_manager, self.metrics)
        self._setup_issuer_middleware()
        self._setup_auth_routes()

    async def on_startup(self) -> None:
        await self.issuer_manager.warmup()

    async def on_shutdown(self) -> None:
        await self.issuer_manager.aclose()

    def _setup_issuer_middleware(self):
        """Attach the issuer domain hint to every request context."""

        @self.app.middleware("http")
        async def attach_issuer_domain(request: Request, call_next):
            set_issuer_domain(issuer_domain_from_request(request))
            try:
                return await call_next(request)
            finally:
                clear_issuer_domain()

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth",
                "message": "Access Layer - Auth Service",
                "version": "1.0.0"
            }

        @self.app.post("/auth/verify")
        async def verify_token(request: TokenVerificationRequest):
            """Token verification endpoint."""
            response = await self.token_validator.verify_token(request.token)

            if not response.valid:
                return {
                    "valid": False,
                    "error": response.error
                }

            return {
                "valid": True,
                "issuer": response.issuer,
                "claims": response.claims,
                "user_info": self.token_validator.user_info_from_claims(response.claims)
            }

        @self.app.get("/auth/issuers")
        async def list_issuers():
            """Configured issuers and the state of their key caches."""
            default = self.issuer_manager.default_issuer
            return {
                "default": default.issuer_url if default is not None else None,
                "issuers": self.issuer_manager.health()
            }

    async def _check_dependencies(self):
        """Check auth dependencies."""
        return {
            domain: "error" if status["state"] == CacheState.FAILED.value else "ok"
            for domain, status in self.issuer_manager.health().items()
        }


def create_app():
    """Create FastAPI application."""
    service = AuthService()
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
