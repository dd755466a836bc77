"""
Shared fixtures for Auth service tests.
"""

import pytest

from shared.config import BaseConfig
from shared.test_helpers import FakeClock, FakeKeyFetcher, signing_key

ISSUER_A = "https://idp-a.example.com/auth/realms/master"
ISSUER_B = "https://IDP-B.example.com/auth/realms/corp"
ISSUER_C = "http://idp-c.example.com:8080/realms/test"


def make_config(addr_token_provider: str, **overrides) -> BaseConfig:
    """Build a config that ignores the environment's .env file."""
    return BaseConfig(_env_file=None, addr_token_provider=addr_token_provider, **overrides)


@pytest.fixture
def clock():
    """Manually advanced clock."""
    return FakeClock()


@pytest.fixture
def key_one():
    return signing_key("key-1")


@pytest.fixture
def key_two():
    return signing_key("key-2")


@pytest.fixture
def fetcher(key_one):
    """Key fetcher serving one RSA key."""
    return FakeKeyFetcher([key_one.public_jwk])


@pytest.fixture
def fetchers():
    """Fetcher factory recording one fake fetcher per issuer URL."""
    created = {}

    def factory(issuer_url):
        created[issuer_url] = FakeKeyFetcher()
        return created[issuer_url]

    factory.created = created
    return factory
