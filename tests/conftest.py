# tests/conftest.py
import io
import json
import sys
import threading
import urllib.error
import urllib.parse
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient

# --- Asegurar que podemos importar 'ticketpass' desde la raíz del repo ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# --- Generación de claves efímeras (RSA 2048) ---
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ticketpass.core.config import Settings
from ticketpass.db.models import Base
from ticketpass.main import build_services, create_app

TOKEN_URI = "https://oauth.test/token"
API_BASE = "https://wallet.test/walletobjects/v1"
ISSUER_EMAIL = "issuer@test-project.iam.gserviceaccount.com"


def _generate_ephemeral_key():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem_priv = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return private_key, pem_priv


@pytest.fixture(scope="session")
def rsa_key():
    return _generate_ephemeral_key()


@pytest.fixture
def private_pem(rsa_key):
    return rsa_key[1]


@pytest.fixture
def public_key(rsa_key):
    return rsa_key[0].public_key()


@pytest.fixture
def credential_doc(private_pem):
    return {
        "type": "service_account",
        "project_id": "test-project",
        "private_key_id": "key-1",
        "private_key": private_pem,
        "client_email": ISSUER_EMAIL,
        "token_uri": TOKEN_URI,
    }


@pytest.fixture
def credential_bytes(credential_doc):
    return json.dumps(credential_doc).encode()


# --- Backend de wallet simulado (sustituye urllib.request.urlopen) ---

class _Resp:
    def __init__(self, status: int, payload: bytes):
        self.status = status
        self._payload = payload

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeWalletBackend:
    """Clases/objetos en memoria con la semántica get/insert/patch del backend real."""

    def __init__(self, public_key):
        self.public_key = public_key
        self.classes: dict[str, dict] = {}
        self.objects: dict[str, dict] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.failures: dict[tuple[str, str], object] = {}
        self.valid_tokens: set[str] = set()
        self.tokens_issued = 0
        self.reject_tokens = False
        self._lock = threading.Lock()

    def count(self, method: str, kind: str) -> int:
        return sum(1 for m, k, _ in self.calls if m == method and k == kind)

    def fail_next(self, method: str, kind: str, failure) -> None:
        """failure: código HTTP (int) o excepción a lanzar."""
        self.failures[(method, kind)] = failure

    def revoke_tokens(self) -> None:
        self.valid_tokens.clear()

    def urlopen(self, req, timeout=None):
        with self._lock:
            if req.full_url == TOKEN_URI:
                return self._token(req)
            return self._api(req)

    def _error(self, req, status: int, payload: dict):
        fp = io.BytesIO(json.dumps(payload).encode())
        raise urllib.error.HTTPError(req.full_url, status, "error", {}, fp)

    def _token(self, req):
        self.calls.append(("POST", "token", None))
        form = urllib.parse.parse_qs(req.data.decode())
        if self.reject_tokens:
            self._error(req, 400, {"error": "invalid_grant", "error_description": "Invalid JWT Signature."})
        claims = jwt.decode(form["assertion"][0], self.public_key, algorithms=["RS256"], audience=TOKEN_URI)
        assert claims["iss"] == ISSUER_EMAIL
        self.tokens_issued += 1
        token = f"tok-{self.tokens_issued}"
        self.valid_tokens.add(token)
        return _Resp(200, json.dumps({"access_token": token, "expires_in": 3600, "token_type": "Bearer"}).encode())

    def _api(self, req):
        assert req.full_url.startswith(API_BASE)
        parts = req.full_url[len(API_BASE):].strip("/").split("/")
        kind = parts[0]
        rid = urllib.parse.unquote(parts[1]) if len(parts) > 1 else None
        method = req.get_method()
        self.calls.append((method, kind, rid))

        auth = req.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            self._error(req, 401, {"error": {"code": 401, "message": "Request had invalid authentication credentials."}})

        failure = self.failures.pop((method, kind), None)
        if isinstance(failure, BaseException):
            raise failure
        if isinstance(failure, int):
            self._error(req, failure, {"error": {"code": failure, "message": "injected failure"}})

        store = self.classes if kind == "eventTicketClass" else self.objects
        if method == "GET":
            if rid not in store:
                self._error(req, 404, {"error": {"code": 404, "message": f"Resource {rid} not found"}})
            return _Resp(200, json.dumps(store[rid]).encode())
        doc = json.loads(req.data.decode())
        if method == "POST":
            if doc["id"] in store:
                self._error(req, 409, {"error": {"code": 409, "message": "Resource already exists"}})
            store[doc["id"]] = doc
            return _Resp(200, json.dumps(doc).encode())
        if method == "PATCH":
            if rid not in store:
                self._error(req, 404, {"error": {"code": 404, "message": f"Resource {rid} not found"}})
            store[rid].update(doc)
            return _Resp(200, json.dumps(store[rid]).encode())
        self._error(req, 405, {"error": {"code": 405, "message": "method not allowed"}})


@pytest.fixture
def backend(monkeypatch, public_key):
    fake = FakeWalletBackend(public_key)
    from urllib import request as _req
    monkeypatch.setattr(_req, "urlopen", fake.urlopen)
    return fake


# --- Settings / servicios efímeros por test ---

@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        db_url=f"sqlite+aiosqlite:///{(tmp_path / 'test.sqlite3').as_posix()}",
        vault_dir=(tmp_path / "keys").as_posix(),
        issuer_id="ISSUER123",
        issuer_name="Test Box Office",
        eligible_categories=["concert"],
        wallet_api_base=API_BASE,
        token_uri=TOKEN_URI,
        save_origins=["https://shop.test"],
        backend_timeout=5.0,
    )


async def start_services(settings, **kwargs):
    """Servicios listos para usar dentro de un único event loop (asyncio.run por test)."""
    services = build_services(settings, **kwargs)
    async with services.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return services


def order_payload(order_id="42", category="concert", **overrides):
    data = {
        "order_id": order_id,
        "product_category": category,
        "billing_first_name": "Ada",
        "billing_last_name": "Lovelace",
        "billing_email": "Ada@Example.com ",
        "billing_phone": "+34 600 000 000",
        "fields": {},
    }
    data.update(overrides)
    return data


@pytest.fixture
def client(settings, backend):
    """
    Cliente de pruebas con entorno efímero:
    - BD sqlite y vault en tmp_path
    - backend de wallet simulado
    """
    app = create_app(settings)
    # Con 'with' forzamos lifespan: crea tablas en startup y cierra engine en shutdown
    with TestClient(app) as c:
        yield c


@pytest.fixture
def configured_client(client, credential_bytes):
    r = client.post("/admin/credential", content=credential_bytes, headers={"X-Actor-Role": "admin"})
    assert r.status_code == 200
    return client
