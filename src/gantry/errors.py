from __future__ import annotations


class GantryError(RuntimeError):
    pass


class ContextError(GantryError):
    """The application named by an import path could not be located."""


class ToolchainMissingError(GantryError):
    """The build interpreter cannot be found; no request can ever be served."""


class ProcessStartError(GantryError):
    pass


class GitError(GantryError):
    pass
