"""BFF gateway: signs browser API calls and forwards them to the upstream API."""
