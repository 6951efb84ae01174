"""Unit tests (no network, no event loop required)."""
