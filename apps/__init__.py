"""
Apps package - FastAPI services on either side of the BFF trust boundary.

This package contains:
- bff_gateway: Browser-facing proxy that signs and forwards API calls
- upstream_api: API shell that validates BFF signatures before routing
"""
