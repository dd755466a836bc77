"""
Tests for shared logging context.
"""

import pytest

from shared.logging import (
    add_correlation_context,
    clear_context,
    issuer_domain_var,
    set_request_id,
    set_user_context,
)


@pytest.fixture(autouse=True)
def reset_context():
    clear_context()
    yield
    clear_context()


def test_correlation_context_is_added():
    set_request_id("req-1")
    set_user_context(user_id="user1")
    issuer_domain_var.set("https://idp.example.com")

    event = add_correlation_context(None, "info", {"event": "hello"})

    assert event["request_id"] == "req-1"
    assert event["user_id"] == "user1"
    assert event["issuer_domain"] == "https://idp.example.com"


def test_explicit_issuer_domain_is_kept():
    issuer_domain_var.set("https://idp.example.com")

    event = add_correlation_context(None, "info", {"event": "hello", "issuer_domain": "https://other.example.com"})

    assert event["issuer_domain"] == "https://other.example.com"


def test_request_id_is_generated():
    request_id = set_request_id()

    assert add_correlation_context(None, "info", {})["request_id"] == request_id


def test_clear_context():
    set_request_id("req-1")
    issuer_domain_var.set("https://idp.example.com")

    clear_context()

    assert add_correlation_context(None, "info", {}) == {}
