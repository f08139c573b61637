"""Prompt composition for page and character sheet generation.

Everything here is a pure function of its inputs: no I/O, no clock, no
randomness, so identical inputs always produce the identical prompt.
"""

from dataclasses import dataclass

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.domain.story import PageMetadata, StyleProfile

NO_TEXT_INSTRUCTION = (
    "ZERO TEXT IN THE IMAGE: do not draw any letters, words, numbers, captions, "
    "signs, labels, speech bubbles or thought bubbles anywhere in the illustration."
)

REQUIRED_TEMPLATE_VARIABLES = (
    "{SCENE_DESCRIPTION}",
    "{EMOTIONAL_TONE}",
    "{ILLUSTRATION_STYLE}",
)

DEFAULT_PAGE_TEMPLATE = """Create a children's book illustration in {ILLUSTRATION_STYLE} \
style. The child from the reference photo is the main character of the scene.

SCENE: {SCENE_DESCRIPTION}
EMOTIONAL TONE: the child looks {EMOTIONAL_TONE}.
COMPOSITION: the child's face sits around {FACE_POSITION_X}% from the left and \
{FACE_POSITION_Y}% from the top of the image.
SCENE COMPLEXITY: {DIFFICULTY}

Match the child's facial features exactly. Keep proportions natural for the child's age."""


@dataclass(frozen=True)
class ConsistencyReferences:
    """Which references besides the raw photo accompany a request."""

    character_sheet: bool = False
    prior_page: bool = False

    @property
    def extra_count(self) -> int:
        """Number of references beyond the raw photo."""
        return int(self.character_sheet) + int(self.prior_page)


def build_page_variables(
    metadata: PageMetadata, illustration_style: str
) -> dict[str, str]:
    """Map template variables to their values for a page."""
    return {
        "{SCENE_DESCRIPTION}": metadata.scene_description,
        "{EMOTIONAL_TONE}": metadata.emotional_tone,
        "{ILLUSTRATION_STYLE}": illustration_style,
        "{FACE_POSITION_X}": _format_number(metadata.face_position.x),
        "{FACE_POSITION_Y}": _format_number(metadata.face_position.y),
        "{DIFFICULTY}": metadata.difficulty,
    }


def substitute_variables(template: str, variables: dict[str, str]) -> str:
    """Replace every occurrence of each variable in the template."""
    result = template
    for variable, value in variables.items():
        result = result.replace(variable, value)
    return result


def validate_prompt_template(template: str) -> list[str]:
    """Return required variables missing from a template."""
    return [name for name in REQUIRED_TEMPLATE_VARIABLES if name not in template]


def format_style_profile(
    style_profile: StyleProfile | None, illustration_style: str
) -> str:
    """Render the art direction section."""
    if style_profile is None:
        return f"ART STYLE: {illustration_style}"
    lines = [
        "ART STYLE (MUST FOLLOW EXACTLY):",
        f"- Technique: {style_profile.technique}",
        f"- Color Palette: {style_profile.color_palette}",
        f"- Line Work: {style_profile.line_work}",
        f"- Texture: {style_profile.texture}",
        f"- Lighting: {style_profile.lighting}",
        f"- Detail Level: {style_profile.detail_level}",
        f"- Atmosphere: {style_profile.atmosphere}",
    ]
    if style_profile.artistic_references:
        lines.append(f"- Artistic References: {style_profile.artistic_references}")
    return "\n".join(lines)


def format_character_description(description: CharacterDescription) -> str:
    """Render the description as a labelled block for prompt injection."""
    return f"""CHARACTER DESCRIPTION (MUST MATCH EXACTLY):

AGE & GENERAL:
- Age: {description.age_range}
- Overall appearance: {description.overall_impression}
- Facial proportions: {description.facial_proportions}

SKIN:
- Skin tone: {description.skin_tone}

EYES:
- Eye color: {description.eye_color}
- Eye shape: {description.eye_shape}

HAIR:
- Hair color: {description.hair_color}
- Hair texture: {description.hair_texture}
- Hairstyle: {description.hair_style}

FACIAL FEATURES:
- Face shape: {description.face_shape}
- Nose: {description.nose}
- Lips/mouth: {description.lips}
- Smile: {description.smile}
- Eyebrows: {description.eyebrows}
- Ears: {description.ears}
- Cheeks: {description.cheeks}
- Chin: {description.chin}

UNIQUE IDENTIFYING FEATURES:
{description.distinctive_features}

COMPLETE DESCRIPTION:
{description.full_description}"""


def build_consistency_block(references: ConsistencyReferences) -> str:
    """Describe each supplied reference image; empty when only the photo is sent."""
    if references.extra_count == 0:
        return ""
    lines = [
        "REFERENCE IMAGES PROVIDED:",
        "- Image 1: a real photograph of the child. Use it for facial identity.",
    ]
    index = 2
    if references.character_sheet:
        lines.append(
            f"- Image {index}: the CHARACTER SHEET, the canonical illustration of this "
            "child in the story's art style. Copy the character's appearance from it."
        )
        index += 1
    if references.prior_page:
        lines.append(
            f"- Image {index}: an earlier illustrated page of this same story. Match "
            "its rendering of the child and its art style."
        )
    lines.append(
        "CONSISTENCY RULE: the child's identity, appearance, hair, clothing "
        "proportions and the art style must remain identical across every supplied "
        "image and this new illustration. Only the scene, pose and expression change."
    )
    return "\n".join(lines)


def wrap_no_text(prompt: str) -> str:
    """Put the no-text instruction at both ends of the prompt, exactly once each."""
    body = prompt.strip()
    if body.startswith(NO_TEXT_INSTRUCTION):
        body = body[len(NO_TEXT_INSTRUCTION) :].strip()
    if body.endswith(NO_TEXT_INSTRUCTION):
        body = body[: -len(NO_TEXT_INSTRUCTION)].strip()
    return f"{NO_TEXT_INSTRUCTION}\n\n{body}\n\n{NO_TEXT_INSTRUCTION}"


def compose_page_prompt(  # noqa: PLR0913
    template: str,
    metadata: PageMetadata,
    illustration_style: str,
    *,
    style_profile: StyleProfile | None = None,
    description: CharacterDescription | None = None,
    references: ConsistencyReferences | None = None,
    custom_instructions: str | None = None,
) -> str:
    """Compose the final generation instruction for one page."""
    base = template.strip() or DEFAULT_PAGE_TEMPLATE
    sections = [
        substitute_variables(base, build_page_variables(metadata, illustration_style))
    ]
    sections.append(format_style_profile(style_profile, illustration_style))
    if description is not None:
        sections.append(format_character_description(description))
    consistency = build_consistency_block(references or ConsistencyReferences())
    if consistency:
        sections.append(consistency)
    if custom_instructions and custom_instructions.strip():
        sections.append(f"ADDITIONAL INSTRUCTIONS: {custom_instructions.strip()}")
    return wrap_no_text("\n\n".join(sections))


def compose_character_sheet_prompt(
    illustration_style: str,
    style_profile: StyleProfile | None,
    description_text: str | None = None,
) -> str:
    """Compose the fixed reference-portrait prompt for the character sheet."""
    if description_text:
        character_section = f"CHARACTER DETAILS:\n{description_text}"
    else:
        character_section = (
            "Study the reference photo(s) carefully and capture every physical "
            "detail of this child."
        )
    body = f"""You are an expert children's book illustrator. Create a character \
reference illustration of the child from the reference photo.

{format_style_profile(style_profile, illustration_style)}

{character_section}

Draw the child from the waist up in a neutral standing pose (3/4 view) on a plain \
light background. Capture every physical detail: hair color, hairstyle, skin tone, \
eye color, facial features. The face must be clearly visible and well lit. Do not add \
story props, scenery or other characters."""
    return wrap_no_text(body)


def generation_summary(
    page_number: int, metadata: PageMetadata, illustration_style: str
) -> str:
    """One-line description of a page request for logs."""
    return (
        f"Page {page_number}: {metadata.scene_description} "
        f"({metadata.emotional_tone}, {illustration_style} style)"
    )


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
