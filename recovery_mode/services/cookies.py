import base64
import binascii
import hashlib
from typing import Callable

from fastapi import Request, Response

from recovery_mode.core.config import PLACEHOLDER_SECRET, WEEK_IN_SECONDS
from recovery_mode.core.db.options import OptionStore
from recovery_mode.core.errors import (
    CookieExpired,
    InvalidCookieFormat,
    InvalidCreatedAt,
    NoCookie,
    SignatureMismatch,
)
from recovery_mode.core.logger import get_logger
from recovery_mode.core.security import constant_time_compare, generate_password, hmac_sha1
from recovery_mode.core.timeutil import current_time

logger = get_logger(__name__)

COOKIE_TAG = "recovery_mode"
AUTH_KEY_OPTION = "recovery_mode_auth_key"
AUTH_SALT_OPTION = "recovery_mode_auth_salt"


class RecoveryModeCookieService:
    """
    Issues and validates the recovery mode session cookie.

    The cookie is ``base64("recovery_mode|<created_at>|<random>|<signature>")``
    where the signature is an HMAC-SHA1 of the first three parts. The random
    part doubles as the session identifier, exposed only as its sha1 digest.

    Signing cannot wait for the application's regular secret loading, which
    happens too late for a crashing request. When the configured secrets are
    missing or left at their placeholder, dedicated ones are generated once
    and kept in the network options.
    """

    def __init__(
        self,
        options: OptionStore,
        name: str = "recovery_mode",
        domain: str | None = None,
        path: str = "/",
        site_path: str = "/",
        auth_key: str | None = None,
        auth_salt: str | None = None,
        length: int = WEEK_IN_SECONDS,
        clock: Callable[[], int] = current_time,
    ):
        self.options = options
        self.name = name
        self.domain = domain
        self.path = path
        self.site_path = site_path
        self.auth_key = auth_key
        self.auth_salt = auth_salt
        self.length = length
        self.clock = clock

    def is_cookie_set(self, request: Request) -> bool:
        return bool(request.cookies.get(self.name))

    def set_cookie(self, response: Response, secure: bool = False) -> None:
        """Attach a fresh session cookie to ``response``, which must end the request."""
        value = self.generate_cookie()

        response.set_cookie(
            key=self.name,
            value=value,
            path=self.path,
            domain=self.domain,
            secure=secure,
            httponly=True,
        )

        if self.path != self.site_path:
            response.set_cookie(
                key=self.name,
                value=value,
                path=self.site_path,
                domain=self.domain,
                secure=secure,
                httponly=True,
            )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(key=self.name, path=self.path, domain=self.domain)
        response.delete_cookie(key=self.name, path=self.site_path, domain=self.domain)

    def validate_cookie(self, cookie: str | None = None, request: Request | None = None) -> None:
        """
        Validate the recovery mode cookie.

        Args:
            cookie: The raw cookie value. Read from ``request`` when omitted.
            request: Request carrying the cookie

        Raises:
            NoCookie: No cookie was supplied
            InvalidCookieFormat: The value does not decode to four parts
            InvalidCreatedAt: The creation time is not a timestamp
            CookieExpired: The cookie is older than the cookie lifetime
            SignatureMismatch: The signature does not match
        """
        cookie = self._resolve(cookie, request)
        _, created_at, random, signature = self._parse_cookie(cookie)

        if not (created_at.isascii() and created_at.isdigit()):
            raise InvalidCreatedAt()

        if self.clock() > int(created_at) + self.length:
            raise CookieExpired()

        expected = self.sign(f"{COOKIE_TAG}|{created_at}|{random}")

        if not constant_time_compare(signature, expected):
            logger.warning("Recovery mode cookie signature mismatch")
            raise SignatureMismatch()

    def get_session_id_from_cookie(self, cookie: str | None = None, request: Request | None = None) -> str:
        """
        Get the session identifier from the cookie.

        The cookie should be validated before calling this.
        """
        cookie = self._resolve(cookie, request)
        _, _, random, _ = self._parse_cookie(cookie)
        return hashlib.sha1(random.encode("utf-8")).hexdigest()

    def generate_cookie(self) -> str:
        to_sign = f"{COOKIE_TAG}|{self.clock()}|{generate_password(20, special_chars=False)}"
        signed = self.sign(to_sign)
        return base64.b64encode(f"{to_sign}|{signed}".encode("utf-8")).decode("ascii")

    def sign(self, data: str) -> str:
        """Recovery mode counterpart of the application's keyed hash."""
        return hmac_sha1(data, self._secret())

    def _resolve(self, cookie: str | None, request: Request | None) -> str:
        if not cookie and request is not None:
            cookie = request.cookies.get(self.name)
        if not cookie:
            raise NoCookie()
        return cookie

    @staticmethod
    def _parse_cookie(cookie: str) -> list[str]:
        try:
            decoded = base64.b64decode(cookie, validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            raise InvalidCookieFormat()

        parts = decoded.split("|")
        if len(parts) != 4:
            raise InvalidCookieFormat()
        return parts

    def _secret(self) -> str:
        if not self.auth_key or self.auth_key == PLACEHOLDER_SECRET:
            auth_key = self._persisted_secret(AUTH_KEY_OPTION)
        else:
            auth_key = self.auth_key

        if not self.auth_salt or self.auth_salt == PLACEHOLDER_SECRET or self.auth_salt == auth_key:
            auth_salt = self._persisted_secret(AUTH_SALT_OPTION)
        else:
            auth_salt = self.auth_salt

        return auth_key + auth_salt

    def _persisted_secret(self, option_name: str) -> str:
        secret = self.options.get(option_name)
        if not secret:
            secret = generate_password(64, special_chars=True, extra_special_chars=True)
            self.options.update(option_name, secret)
            logger.info(f"Generated recovery mode signing secret {option_name}")
        return secret
