# ticketpass/core/errors.py
"""Taxonomía de errores del núcleo (vault, backend, firma, emisión, canje)."""
from __future__ import annotations


class ConfigurationError(Exception):
    """Credencial ausente, mal formada o imposible de descifrar.

    No se reintenta: requiere que el operador vuelva a subir la credencial.
    """


class NotConfigured(ConfigurationError):
    pass


class InvalidFormat(ConfigurationError):
    pass


class DecryptionFailed(ConfigurationError):
    pass


class AuthError(Exception):
    """El backend rechazó el intercambio credencial → token."""

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.payload = payload or {}


class WalletError(Exception):
    pass


class WalletNotFound(WalletError):
    """404: la única respuesta que significa "no existe"."""


class WalletConflict(WalletError):
    """409: el recurso ya existe (inserción concurrente)."""


class WalletTimeout(WalletError):
    pass


class BackendFailure(WalletError):
    def __init__(self, code: int, message: str):
        super().__init__(f"wallet backend error {code}: {message}")
        self.code = code
        self.message = message


class SigningError(Exception):
    NO_CREDENTIAL = "no_credential"
    SIGNATURE_FAILURE = "signature_failure"

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind


class IssuanceError(Exception):
    pass


class InvalidPurchaserData(IssuanceError):
    pass


class WalletUnavailable(IssuanceError):
    pass


class RedemptionError(Exception):
    code = "redemption_failed"
    message = "The pass could not be redeemed."

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message)
        self.detail = detail


class TicketNotFound(RedemptionError):
    code = "not_found"
    message = "No pass matches this ticket."


class AlreadyRedeemed(RedemptionError):
    code = "already_redeemed"
    message = "This pass has already been redeemed."


class NotActive(RedemptionError):
    code = "not_active"
    message = "This pass is not active and cannot be redeemed."


class RedemptionUnavailable(RedemptionError):
    code = "wallet_unavailable"
    message = "Redemption failed. Please try again or contact support."


class RedemptionTimeout(RedemptionError):
    code = "timeout"
    message = "Redemption timed out. Please try again."
