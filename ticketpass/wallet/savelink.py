# ticketpass/wallet/savelink.py
from __future__ import annotations

import logging
import time

from cryptography.exceptions import UnsupportedAlgorithm
from jwt import PyJWTError

from ticketpass.core.config import Settings
from ticketpass.core.crypto import sign_jwt
from ticketpass.core.errors import SigningError
from ticketpass.core.vault import ServiceAccountCredential

logger = logging.getLogger(__name__)


class SaveLinkSigner:
    """Construye la URL "save" firmada (JWT RS256) que añade un pase a la wallet."""

    def __init__(self, settings: Settings):
        self.save_host = settings.save_host
        self.origins = list(settings.save_origins)
        self.alg = settings.jwt_alg

    def claims(self, object_id: str, credential: ServiceAccountCredential, issued_at: int) -> dict:
        return {
            "iss": credential.issuer_email,
            "aud": "google",
            "typ": "savetowallet",
            "iat": issued_at,
            "origins": self.origins,
            "payload": {"eventTicketObjects": [{"id": object_id}]},
        }

    def sign(self, object_id: str, credential: ServiceAccountCredential | None, issued_at: int | None = None) -> str:
        if credential is None:
            raise SigningError(SigningError.NO_CREDENTIAL, "no credential available to sign the save link")
        iat = int(time.time()) if issued_at is None else int(issued_at)
        try:
            token = sign_jwt(self.claims(object_id, credential, iat), credential.private_key, alg=self.alg)
        except (ValueError, TypeError, UnsupportedAlgorithm, PyJWTError) as e:
            logger.error("Save link signing failed for %s: %s", object_id, type(e).__name__)
            raise SigningError(SigningError.SIGNATURE_FAILURE, "save link signature failed") from e
        return f"https://{self.save_host}/gp/v/save/{token}"
