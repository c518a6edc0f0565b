"""
Fatal error handling.

Uncaught exceptions of a request are turned into an ``ErrorInfo`` and handed
to the recovery mode controller before the visitor gets a generic error page.
"""
from fastapi import Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from recovery_mode.controller import RecoveryModeController
from recovery_mode.core.config import RecoveryModeConfig
from recovery_mode.core.errors import RecoveryModeError
from recovery_mode.core.logger import get_logger
from recovery_mode.core.models import ErrorInfo
from recovery_mode.core.templates import render_page
from recovery_mode.services.extensions import ExtensionRegistry

logger = get_logger(__name__)


def should_handle_error(exc: BaseException) -> bool:
    """Only genuine crashes are handled; HTTP errors are regular responses."""
    if not isinstance(exc, Exception):
        return False
    return not isinstance(exc, StarletteHTTPException)


def is_protected_endpoint(request: Request, config: RecoveryModeConfig) -> bool:
    """Whether the request is one where recovery mode may step in."""
    path = request.url.path
    for prefix in config.protected_paths:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(f"{prefix}/"):
            return True
    return False


class FatalErrorHandler:
    """Hands crashes to the recovery mode controller and renders the error page."""

    def __init__(self, config: RecoveryModeConfig, registry: ExtensionRegistry):
        self.config = config
        self.registry = registry

    def handle(
        self,
        exc: BaseException,
        request: Request,
        controller: RecoveryModeController,
        headers_sent: bool = False,
    ) -> Response | None:
        """
        Handle an uncaught exception.

        Inside a recovery mode session every crash goes to the controller so
        the failing extension is paused. Outside a session only protected
        endpoints may trigger a recovery mode email.

        Returns:
            The response to send instead of the failed one, or None when the
            exception is not handled here or nothing can be sent anymore.
        """
        if not self.config.fatal_error_handler_enabled or not should_handle_error(exc):
            return None

        error = ErrorInfo.from_exception(exc, self.registry.roots())
        logger.error(f"Fatal error: {error.kind} in {error.file}:{error.line}: {error.message}")

        handled = False
        if controller.is_active or is_protected_endpoint(request, self.config):
            try:
                response = controller.handle_error(error, request, headers_sent=headers_sent)
            except RecoveryModeError as handling_error:
                logger.warning(f"Recovery mode did not handle the error: {handling_error.code}: {handling_error.message}")
            else:
                if response is not None:
                    return response
                handled = True

        if headers_sent:
            return None

        return self.display_error_page(handled and not controller.is_active)

    def display_error_page(self, email_sent: bool = False) -> Response:
        if email_sent:
            message = (
                "There has been a critical error on this website. "
                "Please check your site admin email inbox for instructions."
            )
        else:
            message = "There has been a critical error on this website."

        return render_page("critical_error.html", status_code=500, message=message)
