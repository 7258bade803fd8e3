#!/usr/bin/env python3
from typing import Optional


class BlockerError(RuntimeError):
    """Base class for failures of the blocking core.

    `operation` names what was being attempted and `path` the system file or
    helper involved, so a log line tells a denied prompt apart from a missing
    helper or an unreadable hosts file.
    """

    def __init__(self, message: str, operation: Optional[str] = None, path: Optional[str] = None):
        self.operation = operation
        self.path = path
        details = ", ".join(
            f"{key}={value}" for key, value in (("operation", operation), ("path", path)) if value
        )
        super().__init__(f"{message} ({details})" if details else message)


class BootstrapError(BlockerError):
    """Elevation was denied or the helper/authorization rule could not be installed."""


class EditError(BlockerError):
    """The hosts file could not be read, staged or installed."""


class BlockError(BlockerError):
    """Blocking could not be started."""


class SweepError(BlockerError):
    """Startup cleanup of a leftover managed region failed."""
