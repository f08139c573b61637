"""Structured appearance description of the child."""

from pydantic import BaseModel, ConfigDict, Field


class CharacterDescription(BaseModel):
    """Exhaustive appearance profile derived from the reference photos."""

    model_config = ConfigDict(
        populate_by_name=True, frozen=True, str_strip_whitespace=True
    )

    age_range: str = Field(alias="ageRange", min_length=1)
    skin_tone: str = Field(alias="skinTone", min_length=1)
    eye_color: str = Field(alias="eyeColor", min_length=1)
    eye_shape: str = Field(alias="eyeShape", min_length=1)
    hair_color: str = Field(alias="hairColor", min_length=1)
    hair_texture: str = Field(alias="hairTexture", min_length=1)
    hair_style: str = Field(alias="hairStyle", min_length=1)
    face_shape: str = Field(alias="faceShape", min_length=1)
    nose: str = Field(min_length=1)
    lips: str = Field(min_length=1)
    smile: str = Field(min_length=1)
    eyebrows: str = Field(min_length=1)
    ears: str = Field(min_length=1)
    cheeks: str = Field(min_length=1)
    chin: str = Field(min_length=1)
    facial_proportions: str = Field(alias="facialProportions", min_length=1)
    distinctive_features: str = Field(alias="distinctiveFeatures", min_length=1)
    overall_impression: str = Field(alias="overallImpression", min_length=1)
    full_description: str = Field(alias="fullDescription", min_length=1)


REQUIRED_FIELDS: list[str] = [
    field.alias or name for name, field in CharacterDescription.model_fields.items()
]
