# tests/test_wallet_client.py
import asyncio
import socket

import pytest

from ticketpass.core.errors import (
    AuthError,
    BackendFailure,
    NotConfigured,
    WalletConflict,
    WalletNotFound,
    WalletTimeout,
)
from ticketpass.core.vault import CredentialVault
from ticketpass.wallet.client import WalletClient
from ticketpass.wallet.models import PassClass, PassObject, PassState, TicketHolder


def _client(settings, credential_bytes=None):
    vault = CredentialVault(settings.vault_dir, default_issuer_id=settings.issuer_id)
    if credential_bytes is not None:
        vault.configure(credential_bytes)
    return WalletClient(settings, vault)


def _object(object_id="ISSUER123.concert.7.abc"):
    return PassObject(
        object_id=object_id,
        class_id="ISSUER123.concert",
        holder=TicketHolder(first_name="Ada", last_name="Lovelace", email="ada@example.com"),
        ticket_number="TKT-7",
        expiration_time="2030-01-01T00:00:00+00:00",
        barcode_payload="TKT-7",
    )


def test_authenticate_returns_token(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    token = asyncio.run(client.authenticate(client.vault.load_credential()))
    assert token.value == "tok-1"
    assert token.fresh()
    assert "tok-1" not in repr(token)


def test_authenticate_rejected_carries_payload(settings, backend, credential_bytes):
    backend.reject_tokens = True
    client = _client(settings, credential_bytes)
    with pytest.raises(AuthError) as exc:
        asyncio.run(client.authenticate(client.vault.load_credential()))
    assert exc.value.payload["error"] == "invalid_grant"


def test_not_configured_fails_before_any_call(settings, backend):
    client = _client(settings)
    with pytest.raises(NotConfigured):
        asyncio.run(client.get_class("ISSUER123.concert"))
    assert backend.calls == []


def test_get_missing_class_is_not_found(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    with pytest.raises(WalletNotFound):
        asyncio.run(client.get_class("ISSUER123.concert"))


def test_insert_then_get_class(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    pc = PassClass(
        class_id="ISSUER123.concert",
        event_name="Spring Gala",
        venue_name="Main Hall",
        event_datetime="2030-04-01T20:00:00+00:00",
        issuer_name="Test Box Office",
    )

    async def scenario():
        await client.insert_class(pc)
        return await client.get_class(pc.class_id)

    assert asyncio.run(scenario()) == pc
    assert backend.classes[pc.class_id]["eventName"]["defaultValue"]["value"] == "Spring Gala"


def test_object_insert_conflict_and_patch(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    obj = _object()

    async def scenario():
        inserted = await client.insert_object(obj)
        with pytest.raises(WalletConflict):
            await client.insert_object(obj)
        await client.patch_object_state(obj.object_id, PassState.REDEEMED)
        return inserted, await client.get_object(obj.object_id)

    inserted, fetched = asyncio.run(scenario())
    assert inserted.state == PassState.ACTIVE
    assert fetched.state == PassState.REDEEMED
    assert fetched.holder.email == "ada@example.com"
    assert backend.objects[obj.object_id]["barcode"] == {"type": "QR_CODE", "value": "TKT-7"}


def test_token_is_cached_across_calls(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    backend.objects["x"] = _object("x").to_resource()

    async def scenario():
        await client.get_object("x")
        await client.get_object("x")

    asyncio.run(scenario())
    assert backend.tokens_issued == 1


def test_401_refreshes_token_once(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    backend.objects["x"] = _object("x").to_resource()

    async def scenario():
        await client.get_object("x")
        backend.revoke_tokens()
        return await client.get_object("x")

    assert asyncio.run(scenario()).object_id == "x"
    assert backend.tokens_issued == 2


def test_persistent_401_is_auth_error(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    original = backend._token

    def _token_not_accepted(req):
        resp = original(req)
        backend.revoke_tokens()
        return resp

    backend._token = _token_not_accepted
    with pytest.raises(AuthError):
        asyncio.run(client.get_object("x"))
    assert backend.count("GET", "eventTicketObject") == 2


def test_other_statuses_are_backend_failures(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    backend.fail_next("GET", "eventTicketObject", 503)
    with pytest.raises(BackendFailure) as exc:
        asyncio.run(client.get_object("x"))
    assert exc.value.code == 503
    assert "injected failure" in exc.value.message


def test_socket_timeout_is_wallet_timeout(settings, backend, credential_bytes):
    client = _client(settings, credential_bytes)
    backend.fail_next("GET", "eventTicketObject", socket.timeout("timed out"))
    with pytest.raises(WalletTimeout):
        asyncio.run(client.get_object("x", timeout=0.5))
