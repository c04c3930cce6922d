"""
Modelos de datos y validación

Define los esquemas Pydantic utilizados para:
- Validar los parámetros de generación antes de cualquier llamada al backend
- Representar los registros de imágenes generadas que se guardan en la galería
- Validar los datos de entrada en los endpoints
- Documentar automáticamente la API con OpenAPI
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from comfyflow.errors import ValidationError
from comfyflow.mask import DrawingTool
from comfyflow.utils import MAX_SEED


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe_errors(error: PydanticValidationError) -> str:
    problems = []
    for detail in error.errors():
        field = ".".join(str(loc) for loc in detail["loc"]) or "parameters"
        problems.append(f"{field}: {detail['msg']}")
    return "; ".join(problems)


class GenerationMode(str, Enum):
    TEXT_TO_IMAGE = "text_to_image"
    IMAGE_TO_IMAGE = "image_to_image"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT)


class GenerationParameters(BaseModel):
    """Immutable description of one generation request."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    prompt: str
    negative_prompt: str | None = None
    style_model_id: str = ""
    style_strength: float = Field(default=0.95, ge=0.0, le=2.0)
    step_count: int = Field(default=25, ge=1, le=150)
    guidance_scale: float = Field(default=1.0, ge=0.0)
    guidance: float = Field(default=3.5, ge=0.0)
    width: int = Field(default=1024, gt=0)
    height: int = Field(default=1024, gt=0)
    batch_size: int = Field(default=1, ge=1)
    seed: int | None = Field(default=None, ge=0, le=MAX_SEED)
    mode: GenerationMode = GenerationMode.TEXT_TO_IMAGE

    # image to image
    reference_image_asset_ref: str | None = None
    mask_asset_ref: str | None = None
    redux_strength: float = Field(default=0.8, ge=0.0)
    downsampling_factor: int = Field(default=1, ge=1)

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be empty")
        return value

    @classmethod
    def create(cls, **fields) -> "GenerationParameters":
        """Build parameters, reporting invalid values as a domain ``ValidationError``."""
        try:
            return cls(**fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid generation parameters: {_describe_errors(e)}") from e


class GeneratedImageRecord(BaseModel):
    id: str
    image_url: str
    local_cache_ref: str | None = None
    filename: str
    prompt: str
    negative_prompt: str | None = None
    parameters: GenerationParameters
    seed: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
    status: JobStatus
    # user flags, never touched by the generation pipeline
    is_bookmarked: bool = False
    is_in_vault: bool = False


class Stroke(BaseModel):
    tool: DrawingTool = DrawingTool.BRUSH
    brush_size: int = Field(default=40, gt=0)
    points: list[tuple[float, float]] = Field(min_length=1)


class ImageRequest(GenerationParameters):
    client_id: str | None = None

    def to_parameters(self, mode: GenerationMode) -> GenerationParameters:
        fields = self.model_dump(include=set(GenerationParameters.model_fields))
        fields["mode"] = mode
        return GenerationParameters.create(**fields)


class MaskRequest(ImageRequest):
    image_b64: str
    strokes: list[Stroke] = Field(default_factory=list)


class JobResponse(BaseModel):
    job_id: str | None
    client_id: str
    status: JobStatus
    progress: float
    stage: str
    seed: int | None = None
    outputs: list[str] = Field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_job(cls, job) -> "JobResponse":
        return cls(
            job_id=job.job_id,
            client_id=job.client_id,
            status=job.status,
            progress=job.progress,
            stage=job.stage,
            seed=job.seed,
            outputs=list(job.outputs),
            error=job.error,
        )


class GenerationResponse(BaseModel):
    job: JobResponse
    images: list[GeneratedImageRecord]
