"""
Error taxonomy shared by rendering, export and the CLI.

Every error is terminal for the operation that raised it. Nothing here is
retried automatically; the CLI maps each kind to its own exit code.
"""

from pathlib import Path


class MatterhornError(Exception):
    """Base class for all Matterhorn failures."""

    exit_code = 1


class ProjectError(MatterhornError):
    """A project or palette document could not be read or written."""

    exit_code = 7


class RenderCancelled(MatterhornError):
    """A render was superseded by a newer request."""

    exit_code = 130


class ExportError(MatterhornError):
    """Base class for export pipeline failures."""


class InvalidSettingsError(ExportError):
    """Pre-flight validation rejected the export configuration."""

    exit_code = 3

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"invalid setting '{field}': {message}")


class ExportIoError(ExportError):
    """Writing frames or creating directories failed."""

    exit_code = 4

    def __init__(self, path: Path | str, message: str):
        self.path = Path(path)
        super().__init__(f"{message} ({self.path})")


class RenderError(ExportError):
    """A tile or pixel computation failed, e.g. on non-finite parameters."""

    exit_code = 5


class FfmpegError(ExportError):
    """The encoder binary is missing or exited unsuccessfully."""

    exit_code = 6

    def __init__(self, message: str, returncode: int | None = None, output: str = ""):
        self.returncode = returncode
        self.output = output
        super().__init__(message)


class ExportCancelled(ExportError):
    """The user aborted the export."""

    exit_code = 130
