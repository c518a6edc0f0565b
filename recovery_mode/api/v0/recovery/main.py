from fastapi import APIRouter, Depends, HTTPException, Request, status

from recovery_mode.api.login import build_exit_url
from recovery_mode.api.v0.recovery.models import (
    PausedExtensionsResponse,
    RecoveryStatusResponse,
    ResumeExtensionResponse,
)
from recovery_mode.bootstrap import RecoveryMode
from recovery_mode.core.logger import get_logger
from recovery_mode.core.models import ExtensionType
from recovery_mode.core.rate_limit import limiter
from recovery_mode.services.paused_extensions import forget_extension_error

# Initialize logger
logger = get_logger(__name__)

router = APIRouter(prefix="/recovery")


def get_recovery_mode(request: Request) -> RecoveryMode:
    return request.state.recovery_mode


def require_recovery_session(recovery: RecoveryMode = Depends(get_recovery_mode)) -> RecoveryMode:
    """Dependency restricting an endpoint to recovery mode sessions"""
    if not recovery.controller.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not in a recovery mode session",
        )
    return recovery


@router.get("/status", response_model=RecoveryStatusResponse)
def recovery_status(recovery: RecoveryMode = Depends(get_recovery_mode)):
    """Whether the request belongs to a recovery mode session."""
    if not recovery.controller.is_active:
        return RecoveryStatusResponse(active=False)

    return RecoveryStatusResponse(active=True, exit_url=build_exit_url(recovery))


@router.get("/paused", response_model=PausedExtensionsResponse)
def list_paused_extensions(
    type: ExtensionType | None = None,
    recovery: RecoveryMode = Depends(require_recovery_session),
):
    """
    List the extensions paused in the current recovery mode session.

    Optionally limited to plugins or themes.
    """
    paused = recovery.paused_extensions().get_all()
    if type:
        paused = {type: paused.get(type, {})}

    return PausedExtensionsResponse(paused=paused)


@router.post("/paused/{type}/{slug}/resume", response_model=ResumeExtensionResponse)
@limiter.limit("30/minute")
def resume_extension(
    request: Request,
    type: ExtensionType,
    slug: str,
    network_wide: bool = False,
    recovery: RecoveryMode = Depends(require_recovery_session),
):
    """
    Resume a paused extension by forgetting its error.

    Rate limited to 30 requests per minute per IP.
    """
    storage = recovery.paused_extensions()

    if not forget_extension_error(storage, type, slug, network_wide=network_wide):
        logger.error(f"Failed to resume {type} {slug}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not resume the extension",
        )

    logger.info(f"Resumed {type} {slug}")
    return ResumeExtensionResponse(type=type, slug=slug.split("/")[0])
