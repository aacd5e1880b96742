class SessionError(Exception):
    """Base class for failures surfaced by the practice session core."""


class PlanUnavailable(SessionError):
    """No plan items could be produced for the requested filters."""


class UpstreamError(SessionError):
    def __init__(self, message: str, request_id: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.status_code = status_code

    def __str__(self) -> str:
        if self.request_id:
            return f"{self.message} (Request ID: {self.request_id})"
        return self.message



class AutoplayBlocked(SessionError):
    """The audio output refused to start without a user gesture."""
