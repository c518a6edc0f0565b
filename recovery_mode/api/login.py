from urllib.parse import urlsplit

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from recovery_mode.bootstrap import RecoveryMode
from recovery_mode.controller import EXIT_ACTION
from recovery_mode.core.errors import error_page
from recovery_mode.core.logger import get_logger
from recovery_mode.core.rate_limit import limiter
from recovery_mode.core.security import create_nonce, verify_nonce
from recovery_mode.core.templates import templates
from recovery_mode.services.links import LOGIN_ACTION_ENTERED

logger = get_logger(__name__)

router = APIRouter()


def build_exit_url(recovery: RecoveryMode) -> str:
    """Link ending the current recovery mode session."""
    nonce = create_nonce(EXIT_ACTION, recovery.cookies.sign, recovery.clock())
    return recovery.links.login_url(action=EXIT_ACTION, _wpnonce=nonce)


def _safe_redirect_target(request: Request) -> str:
    """The referer when it points back to this site, the front page otherwise."""
    referer = request.headers.get("referer")
    if not referer:
        return "/"
    parts = urlsplit(referer)
    if parts.netloc and parts.netloc != request.url.netloc:
        return "/"
    return referer


@router.get("/login", response_class=HTMLResponse)
@limiter.limit("30/minute")
def login_page(
    request: Request,
    action: str | None = None,
    nonce: str | None = Query(default=None, alias="_wpnonce"),
):
    """
    Login surface actions handled by recovery mode.

    Entering recovery mode through an emailed link is handled by the recovery
    mode middleware before this endpoint runs; it redirects here with the
    ``entered_recovery_mode`` action.
    """
    recovery: RecoveryMode = request.state.recovery_mode

    if action == EXIT_ACTION:
        return handle_exit_recovery_mode(request, recovery, nonce)

    if action == LOGIN_ACTION_ENTERED:
        message = "Recovery Mode Initialized. Please log in to continue."
    else:
        message = None

    exit_url = build_exit_url(recovery) if recovery.controller.is_active else None
    return templates.TemplateResponse(request, "login.html", {"message": message, "exit_url": exit_url})


def handle_exit_recovery_mode(request: Request, recovery: RecoveryMode, nonce: str | None) -> Response:
    redirect_to = _safe_redirect_target(request)

    if not recovery.controller.is_active:
        return RedirectResponse(url=redirect_to, status_code=302)

    if not verify_nonce(nonce, EXIT_ACTION, recovery.cookies.sign, recovery.clock()):
        logger.warning("Rejected exit recovery mode request with an invalid nonce")
        return error_page("Exit recovery mode link expired.", status_code=403)

    response = RedirectResponse(url=redirect_to, status_code=302)
    if not recovery.controller.exit_session(response):
        return error_page("Failed to exit recovery mode. Please try again later.")

    return response
