from typing import Dict, Optional


class PetitionPayError(Exception):
    """Base for every error we render as an HTTP response.

    `reason` is a stable machine-readable code; `message` is what the
    dashboard shows to the admin.
    """
    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 reason: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if reason is not None:
            self.reason = reason
        self.headers = headers


class ValidationError(PetitionPayError):
    status_code = 400
    reason = "validation_error"


class AuthError(PetitionPayError):
    status_code = 401
    reason = "token_missing"


class InvalidCredentials(PetitionPayError):
    status_code = 401
    reason = "invalid_admin_code"


class ConflictError(PetitionPayError):
    status_code = 409
    reason = "conflict"


class StoreError(PetitionPayError):
    status_code = 500
    reason = "store_error"


class ConfigError(PetitionPayError):
    status_code = 503
    reason = "config_error"


# never rendered: the notifier logs it and moves on
class NotificationError(PetitionPayError):
    reason = "notification_error"
