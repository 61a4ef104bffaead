from typing import Optional


class ScreenshotError(Exception):
    """Base for every error the API turns into a structured JSON response."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.public_message}

    @property
    def public_message(self) -> str:
        return self.message


class InvalidRequest(ScreenshotError):
    status_code = 400
    error = "invalid_request"


class CaptureFailed(ScreenshotError):
    """Navigation or rendering failed. The cause is logged, never returned."""

    error = "capture_failed"

    @property
    def public_message(self) -> str:
        return "Failed to capture a screenshot of the requested page."


class RenderEngineUnavailable(ScreenshotError):
    error = "render_engine_unavailable"

    @property
    def public_message(self) -> str:
        return "The rendering engine could not be started. Try again later."


class InternalError(ScreenshotError):
    @property
    def public_message(self) -> str:
        return "An unexpected error occurred. Try again later."
