from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError, field_validator

from .errors import InvalidRequest

ImageFormat = Literal["jpeg", "png", "webp"]

SUPPORTED_FORMATS = ("jpeg", "png", "webp")
DEFAULT_FORMAT = "jpeg"
DEFAULT_WIDTH = 800
DEFAULT_HEIGHT = 600
MIN_DIMENSION = 100
MAX_DIMENSION = 2000


def clamp_dimension(value: int) -> int:
    return max(MIN_DIMENSION, min(MAX_DIMENSION, value))


class CaptureRequest(BaseModel):
    """A fully validated screenshot request.

    Dimensions are clamped into [100, 2000] and unknown formats fall back to
    jpeg, so an instance can never hold an out-of-range value.
    """

    model_config = ConfigDict(frozen=True)

    url: HttpUrl = Field(..., description="Absolute http(s) URL of the page to capture.")
    width: int = Field(DEFAULT_WIDTH, description="Viewport width in pixels.")
    height: int = Field(DEFAULT_HEIGHT, description="Viewport height in pixels.")
    format: ImageFormat = Field(DEFAULT_FORMAT, description="Output image format.")

    @field_validator("width", "height", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> Any:
        try:
            return clamp_dimension(int(value))
        except (TypeError, ValueError):
            return value

    @field_validator("format", mode="before")
    @classmethod
    def _fallback_format(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in SUPPORTED_FORMATS:
            return value.strip().lower()
        return DEFAULT_FORMAT

    @property
    def target_url(self) -> str:
        return str(self.url)

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


def parse_dimension(raw: Optional[str], default: int) -> int:
    """Parse a raw query value, using ``default`` when it is missing or not an integer."""
    if raw is None:
        return clamp_dimension(default)
    try:
        value = int(str(raw).strip(), 10)
    except ValueError:
        value = default
    return clamp_dimension(value)


def parse_capture_request(
    url: Optional[str],
    width: Optional[str] = None,
    height: Optional[str] = None,
    format: Optional[str] = None,
    *,
    default_width: int = DEFAULT_WIDTH,
    default_height: int = DEFAULT_HEIGHT,
) -> CaptureRequest:
    """Turn raw query parameters into a CaptureRequest or raise InvalidRequest."""
    if url is None or not url.strip():
        raise InvalidRequest("missing url")

    try:
        return CaptureRequest(
            url=url.strip(),
            width=parse_dimension(width, default_width),
            height=parse_dimension(height, default_height),
            format=format or DEFAULT_FORMAT,
        )
    except ValidationError as e:
        raise InvalidRequest("malformed url") from e
