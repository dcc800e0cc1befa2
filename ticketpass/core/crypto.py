# ticketpass/core/crypto.py
from __future__ import annotations

import jwt
from jwt import InvalidTokenError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def load_private_key(pem: str | bytes) -> rsa.RSAPrivateKey:
    """Carga una clave privada RSA PEM sin contraseña; ValueError si no lo es."""
    if isinstance(pem, str):
        pem = pem.encode()
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key is not an RSA key")
    return key


def public_key_pem(private_pem: str | bytes) -> bytes:
    return load_private_key(private_pem).public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def sign_jwt(payload: dict, private_pem: str | bytes, alg: str = "RS256", headers: dict | None = None) -> str:
    key = load_private_key(private_pem)
    return jwt.encode(payload, key, algorithm=alg, headers=headers)


def decode_save_token(token: str, public_key, alg: str = "RS256") -> dict:
    """
    Verifica la firma de un JWT de save-link y devuelve:
    - {"valid": True, "payload": ...} si la firma es correcta
    - {"valid": False, "reason": ...} si no
    El aud "google" es del backend, así que no se valida aquí.
    """
    if isinstance(public_key, (str, bytes)):
        raw = public_key.encode() if isinstance(public_key, str) else public_key
        public_key = serialization.load_pem_public_key(raw)
    try:
        data = jwt.decode(token, public_key, algorithms=[alg], options={"verify_aud": False})
        return {"valid": True, "payload": data}
    except InvalidTokenError as e:
        return {"valid": False, "reason": str(e)}
