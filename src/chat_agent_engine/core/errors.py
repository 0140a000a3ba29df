from __future__ import annotations


class ChatAgentError(Exception):
    """Base class for errors raised by the agent core."""


class ModelProtocolError(ChatAgentError):
    """A structured model reply was missing its expected delimiter or token."""

    def __init__(self, message: str, response: str = ""):
        super().__init__(message)
        self.response = response


class ImageBackendError(ChatAgentError):
    """Raised by image backend adapters for any transport or backend failure."""


class ImageJobError(ChatAgentError):
    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class ImageJobTimeoutError(ImageJobError):
    pass
