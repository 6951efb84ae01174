"""
ArangoDB SDK Test Suite.

This package contains:
- unit/: Unit tests (no network)
- integration/: Integration tests (fake server on httpx.MockTransport)
- e2e/: End-to-end tests (live ArangoDB server)
"""
