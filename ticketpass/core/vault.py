# ticketpass/core/vault.py
"""Custodia de la credencial de service account.

La credencial se guarda cifrada con Fernet (AES-CBC + HMAC) bajo una clave
simétrica local. La clave vive en claro en disco con permisos 0600: su
directorio es la frontera de confianza, no un mecanismo para compartir
secretos entre máquinas.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ticketpass.core.crypto import load_private_key
from ticketpass.core.errors import DecryptionFailed, InvalidFormat, NotConfigured

logger = logging.getLogger(__name__)

KEY_FILE = "vault.key"
BLOB_FILE = "service_account.enc"


class ServiceAccountCredential(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    issuer_email: str = Field(alias="client_email", min_length=3)
    private_key: str = Field(repr=False, min_length=1)
    issuer_id: str = ""
    private_key_id: str | None = None
    token_uri: str | None = None


class CredentialVault:
    def __init__(self, vault_dir: str | Path, default_issuer_id: str = ""):
        self.vault_dir = Path(vault_dir)
        self.default_issuer_id = default_issuer_id
        self._lock = threading.Lock()
        self._fernet: Fernet | None = None
        self._cached: ServiceAccountCredential | None = None

    @property
    def key_path(self) -> Path:
        return self.vault_dir / KEY_FILE

    @property
    def blob_path(self) -> Path:
        return self.vault_dir / BLOB_FILE

    def is_configured(self) -> bool:
        return self.blob_path.exists()

    def configure(self, raw: bytes) -> ServiceAccountCredential:
        credential = self._parse(raw)
        with self._lock:
            token = self._cipher().encrypt(raw)
            self._write_private(self.blob_path, token)
            self._cached = None
        logger.info("Service account credential stored (issuer=%s)", credential.issuer_email)
        return credential

    def load_credential(self) -> ServiceAccountCredential:
        with self._lock:
            if self._cached is not None:
                return self._cached
            if not self.blob_path.exists():
                raise NotConfigured("no service account credential has been configured")
            try:
                raw = self._cipher().decrypt(self.blob_path.read_bytes())
            except InvalidToken as e:
                logger.error("Stored credential failed integrity verification")
                raise DecryptionFailed("stored credential could not be decrypted") from e
            self._cached = self._parse(raw)
            logger.info("Service account credential loaded")
            return self._cached

    def _parse(self, raw: bytes) -> ServiceAccountCredential:
        try:
            doc = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidFormat("credential is not valid JSON") from e
        if not isinstance(doc, dict):
            raise InvalidFormat("credential must be a JSON object")
        doc.setdefault("issuer_id", self.default_issuer_id)
        try:
            credential = ServiceAccountCredential.model_validate(doc)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InvalidFormat(f"credential is missing or has invalid fields: {', '.join(fields)}") from None
        try:
            load_private_key(credential.private_key)
        except (ValueError, TypeError, UnsupportedAlgorithm):
            raise InvalidFormat("private_key is not a PEM encoded RSA key") from None
        return credential

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            if not self.key_path.exists():
                self.vault_dir.mkdir(parents=True, exist_ok=True)
                os.chmod(self.vault_dir, 0o700)
                self._write_private(self.key_path, Fernet.generate_key())
                logger.warning("New vault encryption key generated at %s", self.key_path)
            try:
                self._fernet = Fernet(self.key_path.read_bytes().strip())
            except ValueError as e:
                raise DecryptionFailed("vault key file is not a valid key") from e
        return self._fernet

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        # escritura atómica: nunca queda un blob a medias
        tmp = path.with_suffix(path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
