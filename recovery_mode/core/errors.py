"""
Error taxonomy for recovery mode.

Every failure of the key, cookie and error-handling paths is raised as a
``RecoveryModeError`` subclass carrying a stable ``code``. Requests that have
to stop on such an error are answered with a plain HTML error page.
"""
from fastapi import Request
from fastapi.responses import HTMLResponse

from recovery_mode.core.templates import render_page


class RecoveryModeError(Exception):
    code = "recovery_mode_error"
    default_message = "Recovery mode failed."
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RecoveryKeyError(RecoveryModeError):
    status_code = 403


class NoKeySet(RecoveryKeyError):
    code = "no_recovery_key_set"
    default_message = "Recovery Mode not initialized."


class InvalidKeyFormat(RecoveryKeyError):
    code = "invalid_recovery_key_format"
    default_message = "Invalid recovery key format."


class HashMismatch(RecoveryKeyError):
    code = "hash_mismatch"
    default_message = "Invalid recovery key."


class KeyExpired(RecoveryKeyError):
    code = "key_expired"
    default_message = "Recovery key expired."


class RecoveryCookieError(RecoveryModeError):
    status_code = 403


class NoCookie(RecoveryCookieError):
    code = "no_cookie"
    default_message = "No cookie present."


class InvalidCookieFormat(RecoveryCookieError):
    code = "invalid_format"
    default_message = "Invalid cookie format."


class InvalidCreatedAt(RecoveryCookieError):
    code = "invalid_created_at"
    default_message = "Invalid cookie format."


class CookieExpired(RecoveryCookieError):
    code = "expired"
    default_message = "Cookie expired."


class SignatureMismatch(RecoveryCookieError):
    code = "signature_mismatch"
    default_message = "Invalid cookie."


class InvalidSource(RecoveryModeError):
    code = "invalid_source"
    default_message = "Error not caused by a plugin or theme."


class StorageError(RecoveryModeError):
    code = "storage_error"
    default_message = "Failed to store the error."


class EmailFailed(RecoveryModeError):
    code = "email_failed"
    default_message = "The email could not be sent. Possible reason: your host may have disabled the mail transport."


class EmailSentAlready(RecoveryModeError):
    code = "email_sent_already"
    default_message = "A recovery link was already sent."


def error_page(error: RecoveryModeError | str, status_code: int | None = None) -> HTMLResponse:
    """Plain error page ending a request."""
    if isinstance(error, RecoveryModeError):
        message = error.message
        code = error.code
        status_code = status_code or error.status_code
    else:
        message = error
        code = None
        status_code = status_code or 500

    return render_page("die.html", status_code=status_code, message=message, code=code)


async def recovery_mode_exception_handler(request: Request, exc: RecoveryModeError) -> HTMLResponse:
    return error_page(exc)


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RecoveryModeError, recovery_mode_exception_handler)
