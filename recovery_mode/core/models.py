import traceback
from pathlib import PurePath
from typing import Iterable, Literal

from pydantic import BaseModel


ExtensionType = Literal["plugin", "theme"]


class Extension(BaseModel):
    """A plugin or theme, identified by its directory name."""

    type: ExtensionType
    slug: str


class ErrorInfo(BaseModel):
    """Structured details of a fatal error, as stored for paused extensions."""

    kind: str
    file: str
    line: int
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException, roots: Iterable[str] = ()) -> "ErrorInfo":
        """
        Describe an uncaught exception.

        The reported location is the innermost traceback frame that lives under
        one of ``roots``; without such a frame it is the innermost frame. Syntax
        errors report the offending source file rather than the importer.
        """
        if isinstance(exc, SyntaxError) and exc.filename:
            return cls(
                kind=type(exc).__name__,
                file=exc.filename,
                line=exc.lineno or 0,
                message=exc.msg or str(exc),
            )

        frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
        roots = [PurePath(root) for root in roots]

        chosen = frames[-1] if frames else None
        for frame in reversed(frames):
            path = PurePath(frame.filename)
            if any(root in path.parents for root in roots):
                chosen = frame
                break

        return cls(
            kind=type(exc).__name__,
            file=chosen.filename if chosen else "",
            line=(chosen.lineno or 0) if chosen else 0,
            message=str(exc),
        )

    def describe(self) -> str:
        return (
            f"An error of type {self.kind} in line {self.line} of the file {self.file}. \n"
            f"Error message: {self.message}"
        )
