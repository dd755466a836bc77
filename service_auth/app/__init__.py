"""
Auth Service package for the Access Layer.

This package exposes the FastAPI application for verifying client tokens
against one or more configured token issuers:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.issuers: Issuer resolution (domain keys, request hint, manager).
- app.jwks: Fetching and caching of each issuer's signing keys.
- app.validation: Token validation against the resolved issuer.

Design notes:
- Keep the package import side-effects minimal; module import must not
  perform network calls. All IO should happen in route handlers or
  explicit startup hooks.
- Use the shared/ utilities for logging, metrics, config, and errors.
"""
