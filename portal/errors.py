"""
Portal Errors

Error taxonomy for the identity and access layer. Every request-level error
carries the HTTP status it maps to and a user-facing message.
"""


class PortalError(Exception):
    """Base class for request-level errors."""

    status_code = 500
    default_message = "Внутрішня помилка сервера"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PortalError):
    """Missing or malformed input."""

    status_code = 400
    default_message = "Неправильний формат запиту"


class AuthenticationError(PortalError):
    """Missing or unknown session token."""

    status_code = 401
    default_message = "Потрібен токен сесії"


class AuthorizationError(PortalError):
    """Authenticated, but not allowed."""

    status_code = 403
    default_message = "Доступ дозволено лише адміністраторам"


class NotFoundError(PortalError):
    """Unknown route or entity."""

    status_code = 404
    default_message = "Не знайдено"


class ConflictError(PortalError):
    """Duplicate email, reused token or a racing registration."""

    status_code = 409
    default_message = "Конфлікт даних"


class ExpiredError(PortalError):
    """Registration token past its expiry."""

    status_code = 410
    default_message = "Токен прострочений"


class MailDeliveryError(PortalError):
    """The mail transport refused or failed to send a message."""

    status_code = 502
    default_message = "Не вдалося надіслати лист"


class FatalStartupError(Exception):
    """The process must not begin serving traffic."""
    pass
