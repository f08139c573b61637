"""Pydantic models for session API payloads."""

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSessionRequest(_CamelModel):
    """Request body for starting a session."""

    story_id: str = Field(alias="storyId", min_length=1)


class GeneratePageRequest(_CamelModel):
    """Request body for generating or regenerating a page."""

    page_number: int = Field(alias="pageNumber", ge=1)
    custom_instructions: str | None = Field(default=None, alias="customInstructions")


class SelectVersionRequest(_CamelModel):
    """Request body for selecting a page version."""

    page_number: int = Field(alias="pageNumber", ge=1)
    version: int = Field(ge=1)


class FavoriteRequest(_CamelModel):
    """Request body for setting or clearing a page's favorite version."""

    page_number: int = Field(alias="pageNumber", ge=1)
    version: int | None = Field(default=None, ge=1)
