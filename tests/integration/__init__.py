"""Integration tests against a fake server behind httpx.MockTransport."""
