from pydantic import BaseModel

from recovery_mode.core.models import ErrorInfo, ExtensionType


class RecoveryStatusResponse(BaseModel):
    active: bool
    exit_url: str | None = None


class PausedExtensionsResponse(BaseModel):
    paused: dict[ExtensionType, dict[str, ErrorInfo]]


class ResumeExtensionResponse(BaseModel):
    type: ExtensionType
    slug: str
    resumed: bool = True
