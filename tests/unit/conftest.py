"""
Unit Test Configuration
=======================
Fixtures for pure logic tests - NO REAL I/O ALLOWED.

All unit tests should be completely isolated from:
- Network (RPC, HTTP)
- File system (except tmp_path)

HTTP is blocked at the transport layer, so ``httpx.MockTransport`` clients
still work.
"""

import pytest


# ============================================================================
# AUTOUSE: ENFORCE I/O ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def isolate_unit_tests(monkeypatch):
    """
    Automatically disable real network I/O for unit tests.
    Any test that accidentally tries to make a network call will fail.
    """
    def block_network(*args, **kwargs):
        raise RuntimeError(
            "Network I/O detected in unit test! "
            "Unit tests must be pure logic with no external dependencies. "
            "Inject an httpx.MockTransport client or a fake contract handle."
        )

    monkeypatch.setattr("httpx.AsyncHTTPTransport.handle_async_request", block_network)
    monkeypatch.setattr("httpx.HTTPTransport.handle_request", block_network)
