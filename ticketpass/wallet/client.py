# ticketpass/wallet/client.py
"""Adaptador fino sobre la API REST del backend de wallet (clases/objetos de evento).

Las llamadas HTTP usan urllib en un hilo de trabajo y siempre llevan timeout.
El token de acceso se cachea en memoria y se renueva de forma perezosa: al
primer uso, al caducar, o una vez tras un 401.
"""
from __future__ import annotations

import asyncio
import json
import logging
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass

from ticketpass.core.config import Settings
from ticketpass.core.crypto import sign_jwt
from ticketpass.core.errors import (
    AuthError,
    BackendFailure,
    WalletConflict,
    WalletNotFound,
    WalletTimeout,
)
from ticketpass.core.vault import CredentialVault, ServiceAccountCredential
from ticketpass.wallet.models import PassClass, PassObject, PassState

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_REFRESH_MARGIN = 60


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float

    def fresh(self) -> bool:
        return time.time() < self.expires_at - TOKEN_REFRESH_MARGIN

    def __repr__(self) -> str:
        return f"AccessToken(expires_at={self.expires_at})"


class _Unauthorized(Exception):
    def __init__(self, payload: dict):
        super().__init__("unauthorized")
        self.payload = payload


class WalletClient:
    def __init__(self, settings: Settings, vault: CredentialVault):
        self.api_base = settings.wallet_api_base.rstrip("/")
        self.token_uri = settings.token_uri
        self.scope = settings.wallet_scope
        self.jwt_alg = settings.jwt_alg
        self.timeout = settings.backend_timeout
        self.vault = vault
        self._token: AccessToken | None = None
        self._token_lock = asyncio.Lock()

    # --- auth ---

    async def authenticate(self, credential: ServiceAccountCredential, timeout: float | None = None) -> AccessToken:
        token_uri = credential.token_uri or self.token_uri
        now = int(time.time())
        headers = {"kid": credential.private_key_id} if credential.private_key_id else None
        assertion = sign_jwt(
            {
                "iss": credential.issuer_email,
                "scope": self.scope,
                "aud": token_uri,
                "iat": now,
                "exp": now + 3600,
            },
            credential.private_key,
            alg=self.jwt_alg,
            headers=headers,
        )
        body = urllib.parse.urlencode({"grant_type": JWT_BEARER_GRANT, "assertion": assertion}).encode()
        req = urllib.request.Request(
            token_uri,
            data=body,
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        status, payload = await self._send(req, timeout)
        if status >= 400 or not payload.get("access_token"):
            logger.error("Wallet backend rejected token exchange (status=%s): %s", status, payload)
            raise AuthError("wallet backend rejected the service account credential", payload)
        expires_in = int(payload.get("expires_in", 3600))
        return AccessToken(value=payload["access_token"], expires_at=time.time() + expires_in)

    async def _bearer(self, timeout: float | None, force: bool = False) -> str:
        async with self._token_lock:
            if force or self._token is None or not self._token.fresh():
                credential = await asyncio.to_thread(self.vault.load_credential)
                self._token = await self.authenticate(credential, timeout)
                logger.debug("Wallet access token refreshed")
            return self._token.value

    def reset_token(self) -> None:
        self._token = None

    # --- clases ---

    async def get_class(self, class_id: str, timeout: float | None = None) -> PassClass:
        res = await self._call("GET", f"/eventTicketClass/{_q(class_id)}", timeout=timeout)
        return PassClass.from_resource(res)

    async def insert_class(self, pass_class: PassClass, timeout: float | None = None) -> PassClass:
        res = await self._call("POST", "/eventTicketClass", pass_class.to_resource(), timeout=timeout)
        return PassClass.from_resource(res)

    # --- objetos ---

    async def get_object(self, object_id: str, timeout: float | None = None) -> PassObject:
        res = await self._call("GET", f"/eventTicketObject/{_q(object_id)}", timeout=timeout)
        return PassObject.from_resource(res)

    async def insert_object(self, pass_object: PassObject, timeout: float | None = None) -> PassObject:
        res = await self._call("POST", "/eventTicketObject", pass_object.to_resource(), timeout=timeout)
        return PassObject.from_resource(res)

    async def patch_object_state(self, object_id: str, state: PassState, timeout: float | None = None) -> None:
        await self._call("PATCH", f"/eventTicketObject/{_q(object_id)}", {"state": state.value}, timeout=timeout)

    # --- transporte ---

    async def _call(self, method: str, path: str, body: dict | None = None, timeout: float | None = None) -> dict:
        token = await self._bearer(timeout)
        try:
            return await self._request(method, path, body, token, timeout)
        except _Unauthorized:
            logger.warning("Wallet backend returned 401 for %s %s; refreshing token once", method, path)
            token = await self._bearer(timeout, force=True)
            try:
                return await self._request(method, path, body, token, timeout)
            except _Unauthorized as e:
                raise AuthError("wallet backend rejected the access token", e.payload) from None

    async def _request(self, method: str, path: str, body: dict | None, token: str, timeout: float | None) -> dict:
        data = json.dumps(body).encode() if body is not None else None
        req = urllib.request.Request(
            f"{self.api_base}{path}",
            data=data,
            method=method,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
        status, payload = await self._send(req, timeout)
        if status < 400:
            return payload
        if status == 401:
            raise _Unauthorized(payload)
        err = payload.get("error")
        message = (err.get("message") if isinstance(err, dict) else err) or "wallet backend error"
        if status == 404:
            raise WalletNotFound(f"{method} {path}: not found")
        if status == 409:
            raise WalletConflict(f"{method} {path}: {message}")
        logger.error("Wallet backend error %s on %s %s: %s", status, method, path, message)
        raise BackendFailure(status, str(message))

    async def _send(self, req: urllib.request.Request, timeout: float | None) -> tuple[int, dict]:
        timeout = self.timeout if timeout is None else timeout
        return await asyncio.to_thread(_urlopen_json, req, timeout)


def _q(resource_id: str) -> str:
    return urllib.parse.quote(resource_id, safe="")


def _decode(raw: bytes) -> dict:
    if not raw:
        return {}
    try:
        doc = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {"error": raw[:200].decode("utf-8", "replace")}
    return doc if isinstance(doc, dict) else {"data": doc}


def _urlopen_json(req: urllib.request.Request, timeout: float) -> tuple[int, dict]:
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, _decode(resp.read())
    except urllib.error.HTTPError as e:
        return e.code, _decode(e.read())
    except (TimeoutError, socket.timeout) as e:
        raise WalletTimeout(f"{req.get_method()} {req.full_url} timed out after {timeout}s") from e
    except urllib.error.URLError as e:
        if isinstance(e.reason, (TimeoutError, socket.timeout)):
            raise WalletTimeout(f"{req.get_method()} {req.full_url} timed out after {timeout}s") from e
        raise BackendFailure(0, f"connection error: {e.reason}") from e
