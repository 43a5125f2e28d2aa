"""
Generate / edit API schemas.
"""
from pydantic import AliasChoices, BaseModel, Field, field_validator

from thumbgen.services.credits.pricing import QualityClass


class FaceCharacter(BaseModel):
    """Reference images of one person, in the order they are sent to the backend."""
    images: list[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    variations: int = Field(default=1, ge=1, description="Number of outputs, capped by max_variations")
    quality_class: QualityClass = Field(
        default=QualityClass.K1,
        validation_alias=AliasChoices("quality_class", "resolution"),
    )
    aspect_ratio: str | None = None
    style: str | None = Field(default=None, max_length=500)
    custom_style: str | None = Field(default=None, max_length=1000)
    palette: str | None = Field(default=None, max_length=200)
    emotion: str | None = Field(default=None, max_length=100)
    pose: str | None = Field(default=None, max_length=100)
    thumbnail_text: str | None = Field(default=None, max_length=200)
    reference_images: list[str] = Field(default_factory=list)
    face_characters: list[FaceCharacter] = Field(default_factory=list)
    # Legacy: one image per character
    face_images: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    def character_groups(self) -> list[list[str]]:
        if self.face_characters:
            return [list(c.images) for c in self.face_characters if c.images]
        return [[img] for img in self.face_images]


class EditRequest(BaseModel):
    artifact_id: str = Field(..., min_length=1, validation_alias=AliasChoices("artifact_id", "thumbnail_id"))
    edit_prompt: str = Field(..., min_length=1)
    reference_images: list[str] = Field(default_factory=list)


class RefundFailureWarningOut(BaseModel):
    amount: int
    reason: str
    request_id: str


class SingleGenerateResponse(BaseModel):
    artifact_id: str
    asset_url: str
    rendition_400w_url: str | None = None
    rendition_800w_url: str | None = None
    credits_used: int
    credits_remaining: int | None


class BatchItemOut(BaseModel):
    succeeded: bool
    artifact_id: str | None
    asset_url: str | None = None
    failure_reason: str | None = None


class BatchGenerateResponse(BaseModel):
    results: list[BatchItemOut]
    credits_used: int
    credits_remaining: int | None
    total_requested: int
    total_succeeded: int
    total_failed: int
    refund_failure_warning: RefundFailureWarningOut | None = None


class EditResponse(BaseModel):
    artifact_id: str
    source_artifact_id: str
    asset_url: str
    credits_used: int
    credits_remaining: int | None
