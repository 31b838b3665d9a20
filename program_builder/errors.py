"""
Exceptions raised by the build service.

A compile error is not one of these: it is a normal ``failed`` build whose
diagnostics carry the compiler output.
"""


class BuilderError(Exception):
    """Base exception for the build service."""


class InvalidInput(BuilderError):
    """The build request was rejected before anything was written to disk."""


class ToolchainUnavailable(BuilderError):
    """The build command could not be started."""


class StorageError(BuilderError):
    """The remote object store could not be reached or returned an error."""


class NotBuilt(BuilderError):
    """No artifact could be found for the requested program."""
