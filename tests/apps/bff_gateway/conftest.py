"""Shared fixtures for bff_gateway tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from apps.bff_gateway.credential_store import CredentialCookieConfig, CredentialStore
from apps.bff_gateway.proxy import ProxyForwarder
from config.settings import Settings
from libs.bff_auth.signer import BffSigner
from libs.bff_auth.validator import BffRequestValidator


@pytest.fixture()
def signer(bff_secret: str, fixed_clock: int) -> BffSigner:
    return BffSigner(secret=bff_secret, bff_id="nextjs-bff-prod", clock=lambda: fixed_clock)


@pytest.fixture()
def validator(bff_secret: str, fixed_clock: int) -> BffRequestValidator:
    """Receiving-side validator used to check what the gateway sent."""
    return BffRequestValidator(
        secret=bff_secret, expected_bff_id="nextjs-bff-prod", clock=lambda: fixed_clock
    )


@pytest.fixture()
def credentials() -> CredentialStore:
    return CredentialStore(CredentialCookieConfig(secure=False))


@pytest.fixture()
async def forwarder(
    settings: Settings, signer: BffSigner, credentials: CredentialStore
) -> AsyncIterator[ProxyForwarder]:
    forwarder = ProxyForwarder(settings, signer, credentials)
    await forwarder.startup()
    try:
        yield forwarder
    finally:
        await forwarder.shutdown()
