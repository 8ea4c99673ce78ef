# humanity_link/errors.py
"""
Failure taxonomy shared by the prover, resolver and profile store.

Every error carries the HTTP status the API layer answers with, so handlers
never have to guess whether a failure is the caller's fault or upstream's.
"""


class HumanityLinkError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ConfigurationError(HumanityLinkError):
    """Required settings (credentials, backend selection) are missing or wrong."""


class InvalidInput(HumanityLinkError):
    status_code = 400


# --- proof backend

class InvocationError(HumanityLinkError):
    pass


class Timeout(InvocationError):
    pass


class BackendUnavailable(InvocationError):
    pass


class BackendExecutionFailure(InvocationError):
    pass


class ParseError(BackendExecutionFailure):
    """Backend exited cleanly but its output broke the output contract."""


class UnrecognizedFormat(ParseError):
    pass


# --- identity directory

class ResolutionError(HumanityLinkError):
    pass


class DirectoryUnreachable(ResolutionError):
    pass


class DirectoryRejected(ResolutionError):
    pass


class AmbiguousMatch(ResolutionError):
    pass


# --- profile store

class StoreError(HumanityLinkError):
    pass


class ValidationFailure(StoreError):
    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NotFound(StoreError):
    status_code = 404
