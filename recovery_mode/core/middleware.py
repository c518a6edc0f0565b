"""
Middleware for the recovery mode application
Runs recovery mode for every request and logs requests
"""
from typing import Callable

from fastapi import Request, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from recovery_mode.bootstrap import build_recovery_mode, build_registry
from recovery_mode.core.config import RecoveryModeConfig
from recovery_mode.core.logger import get_logger
from recovery_mode.core.timeutil import current_time
from recovery_mode.fatal_error_handler import FatalErrorHandler
from recovery_mode.services.extensions import ExtensionRegistry
from recovery_mode.services.mailer import Mailer

logger = get_logger(__name__)


class RecoveryModeMiddleware:
    """
    Initialize recovery mode for each request and catch fatal errors.

    The recovery mode services are available to endpoints as
    ``request.state.recovery_mode``.
    """

    def __init__(
        self,
        app: ASGIApp,
        session_factory: Callable[[], Session],
        config: RecoveryModeConfig,
        mailer: Mailer | None = None,
        registry: ExtensionRegistry | None = None,
        clock: Callable[[], int] = current_time,
        hash_rounds: int = 12,
    ) -> None:
        self.app = app
        self.session_factory = session_factory
        self.config = config
        self.mailer = mailer
        self.registry = registry or build_registry(config)
        self.clock = clock
        self.hash_rounds = hash_rounds
        self.fatal_errors = FatalErrorHandler(config, self.registry)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        session = self.session_factory()
        try:
            recovery = build_recovery_mode(
                session,
                self.config,
                mailer=self.mailer,
                registry=self.registry,
                clock=self.clock,
                site_url=self.config.site_url or str(request.base_url),
                hash_rounds=self.hash_rounds,
            )
            request.state.recovery_mode = recovery

            early_response = await run_in_threadpool(recovery.controller.run, request)
            if early_response is not None:
                await early_response(scope, receive, send)
                return

            headers_sent = False

            async def send_tracking_headers(message: Message) -> None:
                nonlocal headers_sent
                if message["type"] == "http.response.start":
                    headers_sent = True
                await send(message)

            try:
                await self.app(scope, receive, send_tracking_headers)
            except Exception as exc:
                response = await run_in_threadpool(
                    self.fatal_errors.handle, exc, request, recovery.controller, headers_sent
                )
                if response is None:
                    raise
                await response(scope, receive, send)
        finally:
            session.close()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log requests for audit purposes"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} - IP: {client_ip}")

        response = await call_next(request)

        recovery = getattr(request.state, "recovery_mode", None)
        in_session = bool(recovery and recovery.controller.is_active)
        logger.info(f"{request.method} {request.url.path} - Status: {response.status_code} - Recovery session: {in_session}")

        return response
