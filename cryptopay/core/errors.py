"""
Error taxonomy shared by every entry point.

Services raise these; ``cryptopay.main`` renders them as
``{"error": message, "code": code}`` with ``status_code``.
"""
from typing import Optional


class CryptoPayError(Exception):
    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(CryptoPayError):
    status_code = 400
    default_code = "invalid_request"


class NotFoundError(CryptoPayError):
    status_code = 404
    default_code = "not_found"


class AuthError(CryptoPayError):
    status_code = 401
    default_code = "unauthorized"


class EntitlementError(CryptoPayError):
    status_code = 402
    default_code = "entitlement_blocked"

    ENTITLEMENT_BLOCKED = "entitlement_blocked"
    UPGRADE_REQUIRED = "upgrade_required"

    def __init__(self, message: str, code: str, upgrade_url: Optional[str] = None):
        super().__init__(message, code)
        self.upgrade_url = upgrade_url

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.upgrade_url:
            body["upgrade_url"] = self.upgrade_url
        return body


class ConfigurationError(CryptoPayError):
    """Merchant setup problems are 400; deployment setup problems pass status_code=500."""

    status_code = 400
    default_code = "not_configured"

    def __init__(self, message: str, code: Optional[str] = None, status_code: int = 400):
        super().__init__(message, code)
        self.status_code = status_code


class PriceUnavailableError(CryptoPayError):
    status_code = 502
    default_code = "price_unavailable"


class UpstreamRpcError(CryptoPayError):
    status_code = 502
    default_code = "upstream_rpc_error"


class StorageError(CryptoPayError):
    status_code = 500
    default_code = "storage_error"
