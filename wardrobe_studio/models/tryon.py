"""Try-on request and result models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ErrorKind, TryOnError

MAX_SEED = 2**31 - 1


class Category(str, Enum):
    AUTO = "auto"
    TOPS = "tops"
    BOTTOMS = "bottoms"
    ONE_PIECES = "one-pieces"


class Mode(str, Enum):
    PERFORMANCE = "performance"
    BALANCED = "balanced"
    QUALITY = "quality"


class GarmentPhotoType(str, Enum):
    AUTO = "auto"
    MODEL = "model"
    FLAT_LAY = "flat-lay"


class ModerationLevel(str, Enum):
    PERMISSIVE = "permissive"
    CONSERVATIVE = "conservative"
    NONE = "none"


class OutputFormat(str, Enum):
    PNG = "png"
    JPG = "jpg"


class TryOnParams(BaseModel):
    """Everything the vendor needs for one try-on request."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_image: str = Field(description="http(s) URL or data:image/ URL of the actor photo")
    garment_image: str = Field(description="http(s) URL or data:image/ URL of the garment")
    category: Category = Category.AUTO
    mode: Mode = Mode.BALANCED
    seed: int | None = Field(default=None, ge=0, le=MAX_SEED)
    num_samples: int = Field(default=1, ge=1, le=4)
    garment_photo_type: GarmentPhotoType = GarmentPhotoType.AUTO
    segmentation_free: bool = True
    moderation_level: ModerationLevel = ModerationLevel.PERMISSIVE
    output_format: OutputFormat = OutputFormat.PNG
    return_base64: bool = False

    @field_validator("model_image", "garment_image")
    @classmethod
    def _image_reference(cls, value: str) -> str:
        if not (value.startswith(("http://", "https://")) or value.startswith("data:image/")):
            raise ValueError("must be an http(s) URL or a data:image/ URL")
        return value

    @classmethod
    def build(cls, **values: Any) -> "TryOnParams":
        """Validate raw request values, raising taxonomy errors."""
        if not values.get("model_image") or not values.get("garment_image"):
            raise TryOnError(ErrorKind.MISSING_IMAGES, "model_image and garment_image are required")
        cleaned = {k: v for k, v in values.items() if v is not None}
        try:
            return cls(**cleaned)
        except ValidationError as exc:
            raise TryOnError(
                ErrorKind.INVALID_INPUT,
                "Invalid request parameters",
                exc.errors(include_url=False, include_context=False),
            ) from exc

    def vendor_inputs(self) -> dict[str, Any]:
        """The `inputs` block of a vendor run request."""
        inputs = self.model_dump(mode="json", exclude={"return_base64"})
        if self.return_base64:
            inputs["return_base64"] = True
        return inputs

    def log_summary(self) -> dict[str, Any]:
        """Request summary that is safe to log (no image content)."""
        return self.model_dump(mode="json", exclude={"model_image", "garment_image"})


class TryOnResult(BaseModel):
    """One generated image and the parameters that produced it."""

    image_url: str | None = None
    base64: str | None = None
    seed: int
    params: TryOnParams
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str
    job_id: str | None = None
