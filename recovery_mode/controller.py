"""
Recovery mode controller.

The controller decides, once per request, whether a recovery mode session
is active, and reacts to fatal errors: outside a session it emails a
recovery link, inside a session it pauses the failing extension and reloads
the page so further failing extensions are caught too.
"""
from typing import Callable, Protocol, runtime_checkable

from fastapi import Request, Response
from fastapi.responses import RedirectResponse

from recovery_mode.core.config import RecoveryModeConfig
from recovery_mode.core.errors import InvalidSource, RecoveryCookieError, StorageError, error_page
from recovery_mode.core.logger import get_logger
from recovery_mode.core.models import ErrorInfo
from recovery_mode.services.cookies import RecoveryModeCookieService
from recovery_mode.services.email import RecoveryModeEmailService
from recovery_mode.services.extensions import ExtensionRegistry
from recovery_mode.services.keys import RecoveryModeKeyService
from recovery_mode.services.links import RecoveryModeLinkService
from recovery_mode.services.paused_extensions import PausedExtensionsStorage, record_extension_error

logger = get_logger(__name__)

EXIT_ACTION = "exit_recovery_mode"


@runtime_checkable
class RecoveryModeController(Protocol):
    """What the application needs from a recovery mode controller."""

    def run(self, request: Request) -> Response | None:
        """
        Initialize recovery mode for the request.

        Returns a response when the request has to end here.
        """
        ...

    def handle_error(self, error: ErrorInfo, request: Request, headers_sent: bool = False) -> Response | None:
        """Handle a fatal error; returns a response replacing the failed one."""
        ...

    @property
    def is_active(self) -> bool:
        ...

    @property
    def session_id(self) -> str | None:
        ...

    def exit_session(self, response: Response) -> bool:
        ...


class EmailRecoveryModeController:
    """Default controller: sessions are entered through an emailed link."""

    def __init__(
        self,
        cookies: RecoveryModeCookieService,
        keys: RecoveryModeKeyService,
        links: RecoveryModeLinkService,
        email: RecoveryModeEmailService,
        registry: ExtensionRegistry,
        paused_extensions: Callable[[str | None], PausedExtensionsStorage],
        config: RecoveryModeConfig,
    ):
        self.cookies = cookies
        self.keys = keys
        self.links = links
        self.email = email
        self.registry = registry
        self.paused_extensions_factory = paused_extensions
        self.config = config
        self._is_active = False
        self._session_id: str | None = None

    @property
    def is_active(self) -> bool:
        """Whether recovery mode is active. Fixed once ``run`` has been called."""
        return self._is_active

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def paused_extensions(self) -> PausedExtensionsStorage:
        return self.paused_extensions_factory(self._session_id)

    def run(self, request: Request) -> Response | None:
        if self.config.session_id:
            self._is_active = True
            self._session_id = self.config.session_id
            return None

        if self.cookies.is_cookie_set(request):
            return self._handle_cookie(request)

        return self.links.handle_begin_link(request, self.cookies, self.get_link_ttl())

    def handle_error(self, error: ErrorInfo, request: Request, headers_sent: bool = False) -> Response | None:
        """
        Handle a fatal error occurring.

        Returns:
            None when the error was handled and the current response should
            be finished as is, or a redirect to the same URL so the page is
            loaded again with the failing extension paused.

        Raises:
            InvalidSource: The error was not caused by a plugin or theme
            StorageError: The error could not be stored
            EmailFailed, EmailSentAlready: The recovery email was not sent
        """
        extension = self.registry.get_extension_for_error(error)

        if extension is None or self.registry.is_network_plugin(extension):
            raise InvalidSource()

        if not self.is_active:
            self.email.maybe_send_recovery_mode_email(
                self.get_email_rate_limit(),
                error,
                extension,
                link_ttl=self.get_link_ttl(),
                location=str(request.url),
            )
            return None

        if not record_extension_error(self.paused_extensions, extension, error):
            raise StorageError()

        logger.info(f"Paused {extension.type} {extension.slug} after {error.kind} in {error.file}:{error.line}")

        if headers_sent:
            return None

        return self._redirect_protected(request)

    def exit_session(self, response: Response) -> bool:
        """End the current recovery mode session."""
        if not self.is_active:
            return False

        self.email.clear_rate_limit()
        self.cookies.clear_cookie(response)
        self.paused_extensions.delete_all()

        logger.info("Exited recovery mode")
        return True

    def get_email_rate_limit(self) -> int:
        return self.config.email_rate_limit

    def get_link_ttl(self) -> int:
        """Seconds a recovery link is valid; never shorter than the email rate limit."""
        rate_limit = self.get_email_rate_limit()
        valid_for = self.config.email_link_ttl if self.config.email_link_ttl is not None else rate_limit
        return max(valid_for, rate_limit)

    def _handle_cookie(self, request: Request) -> Response | None:
        try:
            self.cookies.validate_cookie(request=request)
        except RecoveryCookieError as error:
            logger.warning(f"Rejected recovery mode cookie: {error.code}")
            response = error_page(error)
            self.cookies.clear_cookie(response)
            return response

        self._is_active = True
        self._session_id = self.cookies.get_session_id_from_cookie(request=request)
        return None

    def _redirect_protected(self, request: Request) -> Response:
        # Only reached once the failing extension is paused, so the reload
        # cannot fail the same way again.
        return RedirectResponse(url=str(request.url), status_code=302)


def resolve_controller(candidate: object, default: RecoveryModeController) -> RecoveryModeController:
    """Use ``candidate`` as the controller if it implements the controller interface."""
    if candidate is None:
        return default

    if not isinstance(candidate, RecoveryModeController):
        logger.error(f"Ignoring recovery mode controller {type(candidate).__name__}: missing controller methods")
        return default

    return candidate
