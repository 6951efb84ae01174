"""End-to-end tests against a live ArangoDB server."""
