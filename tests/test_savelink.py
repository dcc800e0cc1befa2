# tests/test_savelink.py
import base64
import json

import pytest

from ticketpass.core.crypto import decode_save_token, public_key_pem
from ticketpass.core.errors import SigningError
from ticketpass.core.vault import ServiceAccountCredential
from ticketpass.wallet.savelink import SaveLinkSigner

OBJECT_ID = "ISSUER123.concert.42.xyz"
FIXED_IAT = 1_700_000_000


def _b64json(part: str) -> dict:
    part += "=" * (-len(part) % 4)
    return json.loads(base64.urlsafe_b64decode(part))


@pytest.fixture
def credential(credential_doc):
    return ServiceAccountCredential.model_validate({**credential_doc, "issuer_id": "ISSUER123"})


def test_link_shape_and_claims(settings, credential):
    url = SaveLinkSigner(settings).sign(OBJECT_ID, credential, issued_at=FIXED_IAT)
    assert url.startswith("https://pay.google.com/gp/v/save/")

    token = url.rsplit("/", 1)[1]
    parts = token.split(".")
    assert len(parts) == 3
    assert all("=" not in p and "+" not in p and "/" not in p for p in parts)

    assert _b64json(parts[0]) == {"alg": "RS256", "typ": "JWT"}
    assert _b64json(parts[1]) == {
        "iss": credential.issuer_email,
        "aud": "google",
        "typ": "savetowallet",
        "iat": FIXED_IAT,
        "origins": ["https://shop.test"],
        "payload": {"eventTicketObjects": [{"id": OBJECT_ID}]},
    }


def test_fixed_inputs_are_deterministic_and_verify(settings, credential, public_key):
    signer = SaveLinkSigner(settings)
    first = signer.sign(OBJECT_ID, credential, issued_at=FIXED_IAT)
    second = signer.sign(OBJECT_ID, credential, issued_at=FIXED_IAT)
    assert first == second

    token = first.rsplit("/", 1)[1]
    res = decode_save_token(token, public_key)
    assert res["valid"] is True
    assert res["payload"]["payload"]["eventTicketObjects"][0]["id"] == OBJECT_ID

    # también con la PEM pública derivada de la credencial
    assert decode_save_token(token, public_key_pem(credential.private_key))["valid"] is True


def test_different_timestamps_give_different_valid_links(settings, credential, public_key):
    signer = SaveLinkSigner(settings)
    a = signer.sign(OBJECT_ID, credential, issued_at=FIXED_IAT)
    b = signer.sign(OBJECT_ID, credential, issued_at=FIXED_IAT + 60)
    assert a != b
    for url in (a, b):
        assert decode_save_token(url.rsplit("/", 1)[1], public_key)["valid"] is True


def test_tampered_token_does_not_verify(settings, credential, public_key):
    token = SaveLinkSigner(settings).sign(OBJECT_ID, credential, issued_at=FIXED_IAT).rsplit("/", 1)[1]
    p = token.split(".")
    claims = _b64json(p[1])
    claims["payload"]["eventTicketObjects"][0]["id"] = "ISSUER123.concert.43.xyz"
    forged = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    tampered = f"{p[0]}.{forged}.{p[2]}"
    out = decode_save_token(tampered, public_key)
    assert out["valid"] is False
    assert "reason" in out


def test_missing_credential_is_no_credential(settings):
    with pytest.raises(SigningError) as exc:
        SaveLinkSigner(settings).sign(OBJECT_ID, None)
    assert exc.value.kind == SigningError.NO_CREDENTIAL


def test_broken_key_is_signature_failure(settings, credential):
    broken = credential.model_copy(update={"private_key": "not a key"})
    with pytest.raises(SigningError) as exc:
        SaveLinkSigner(settings).sign(OBJECT_ID, broken)
    assert exc.value.kind == SigningError.SIGNATURE_FAILURE
