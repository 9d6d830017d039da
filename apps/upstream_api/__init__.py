"""Upstream API guard: HMAC validation of requests signed by the BFF gateway."""
