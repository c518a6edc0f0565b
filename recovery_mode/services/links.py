from urllib.parse import urlencode

from fastapi import Request, Response
from fastapi.responses import RedirectResponse

from recovery_mode.core.errors import RecoveryKeyError, error_page
from recovery_mode.core.logger import get_logger
from recovery_mode.services.cookies import RecoveryModeCookieService
from recovery_mode.services.keys import RecoveryModeKeyService

logger = get_logger(__name__)

LOGIN_ACTION_ENTER = "enter_recovery_mode"
LOGIN_ACTION_ENTERED = "entered_recovery_mode"


class RecoveryModeLinkService:
    """Generates recovery mode links and redeems them on the login page."""

    def __init__(self, keys: RecoveryModeKeyService, login_path: str = "/login", site_url: str = ""):
        self.keys = keys
        self.login_path = login_path
        self.site_url = site_url.rstrip("/")

    def login_url(self, **query: str) -> str:
        url = f"{self.site_url}{self.login_path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    def generate_url(self) -> str:
        """
        Generate a URL to begin recovery mode.

        Only one recovery mode URL can be valid at the same time.
        """
        key = self.keys.generate_and_store_recovery_mode_key()
        return self.login_url(action=LOGIN_ACTION_ENTER, rm_key=key)

    def handle_begin_link(self, request: Request, cookies: RecoveryModeCookieService, ttl: int) -> Response | None:
        """
        Enter recovery mode when the login page is hit with a valid link.

        Args:
            request: The current request
            cookies: Service setting the session cookie once the link is valid
            ttl: Number of seconds the link is valid for

        Returns:
            The response ending the request, or None when the request carries
            no recovery mode link.
        """
        if request.url.path != self.login_path:
            return None

        action = request.query_params.get("action")
        key = request.query_params.get("rm_key")
        if action != LOGIN_ACTION_ENTER or key is None:
            return None

        try:
            self.keys.validate_recovery_mode_key(key, ttl)
        except RecoveryKeyError as error:
            logger.warning(f"Rejected recovery mode link: {error.code}")
            return error_page(error)

        response = RedirectResponse(url=self.login_url(action=LOGIN_ACTION_ENTERED), status_code=302)
        cookies.set_cookie(response, secure=request.url.scheme == "https")
        logger.info("Recovery mode link redeemed, session cookie issued")
        return response
