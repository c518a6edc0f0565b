"""
Recovery mode - regain access to a site crashed by a plugin or theme
Main FastAPI application
"""
import os
from typing import Callable

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import Session

from recovery_mode.api.login import router as login_router
from recovery_mode.api.router import router as api_router
from recovery_mode.core.config import RecoveryModeConfig, get_config
from recovery_mode.core.errors import register_exception_handlers
from recovery_mode.core.logger import configure_app_logging, get_logger
from recovery_mode.core.middleware import RecoveryModeMiddleware, RequestLoggingMiddleware
from recovery_mode.core.rate_limit import limiter
from recovery_mode.core.timeutil import current_time
from recovery_mode.services.extensions import ExtensionRegistry
from recovery_mode.services.mailer import Mailer

logger = get_logger(__name__)

DEBUG = os.getenv("RECOVERY_MODE_DEBUG", "false").lower() == "true"


def create_app(
    session_factory: Callable[[], Session] | None = None,
    config: RecoveryModeConfig | None = None,
    mailer: Mailer | None = None,
    registry: ExtensionRegistry | None = None,
    clock: Callable[[], int] = current_time,
    hash_rounds: int = 12,
) -> FastAPI:
    """
    Create the application.

    Args:
        session_factory: Opens a database session per request
        config: Recovery mode configuration, read from the environment by default
        mailer: Mail transport for recovery links, SMTP by default
        registry: Known plugins and themes, built from the configuration by default
        clock: Source of the current unix time
        hash_rounds: bcrypt cost for recovery keys
    """
    if session_factory is None:
        from recovery_mode.core.db.session import SessionLocal

        session_factory = SessionLocal

    config = config or get_config()

    app = FastAPI(title="Recovery Mode", debug=DEBUG)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # Request logging reads the recovery state, so it sits inside recovery mode
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RecoveryModeMiddleware,
        session_factory=session_factory,
        config=config,
        mailer=mailer,
        registry=registry,
        clock=clock,
        hash_rounds=hash_rounds,
    )

    app.include_router(login_router)
    app.include_router(api_router)

    logger.info("Recovery mode application initialized")
    return app


def create_default_app() -> FastAPI:
    """Entry point for ASGI servers, e.g. ``uvicorn --factory recovery_mode.app:create_default_app``."""
    configure_app_logging(log_to_file=os.getenv("RECOVERY_MODE_LOG_TO_FILE", "true").lower() == "true")
    return create_app()
