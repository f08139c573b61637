"""Tests for prompt composition."""

import json

from story_personalizer.domain.story import FacePosition, PageMetadata, StyleProfile
from story_personalizer.services.character_analyzer import parse_character_description
from story_personalizer.services.prompts import (
    NO_TEXT_INSTRUCTION,
    ConsistencyReferences,
    build_consistency_block,
    compose_character_sheet_prompt,
    compose_page_prompt,
    generation_summary,
    validate_prompt_template,
    wrap_no_text,
)
from tests.conftest import description_payload

METADATA = PageMetadata(
    scene_description="Climbing a giant oak tree",
    emotional_tone="excited",
    face_position=FacePosition(x=30, y=42.5),
    difficulty="complex",
)

STYLE = StyleProfile(
    technique="loose watercolor washes",
    color_palette="warm autumn tones",
    line_work="thin ink outlines",
    texture="cold-press paper grain",
    lighting="golden hour",
    detail_level="moderate",
    atmosphere="cozy",
)


def test_variables_are_substituted_everywhere() -> None:
    template = (
        "{SCENE_DESCRIPTION} / {SCENE_DESCRIPTION} in {ILLUSTRATION_STYLE}, "
        "{EMOTIONAL_TONE}, face at {FACE_POSITION_X},{FACE_POSITION_Y}, {DIFFICULTY}"
    )

    prompt = compose_page_prompt(template, METADATA, "watercolor")

    assert prompt.count("Climbing a giant oak tree") == 2
    assert "face at 30,42.5" in prompt
    assert "{" not in prompt


def test_blank_template_uses_default() -> None:
    prompt = compose_page_prompt("   ", METADATA, "watercolor")

    assert "Create a children's book illustration in watercolor style" in prompt
    assert "ART STYLE: watercolor" in prompt


def test_style_profile_is_rendered() -> None:
    prompt = compose_page_prompt("", METADATA, "watercolor", style_profile=STYLE)

    assert "- Technique: loose watercolor washes" in prompt
    assert "Artistic References" not in prompt


def test_no_text_instruction_wraps_prompt_once() -> None:
    prompt = compose_page_prompt("", METADATA, "watercolor")

    assert prompt.startswith(NO_TEXT_INSTRUCTION)
    assert prompt.endswith(NO_TEXT_INSTRUCTION)
    assert prompt.count(NO_TEXT_INSTRUCTION) == 2
    assert wrap_no_text(prompt) == prompt


def test_consistency_block_absent_with_photo_only() -> None:
    prompt = compose_page_prompt(
        "", METADATA, "watercolor", references=ConsistencyReferences()
    )

    assert "REFERENCE IMAGES PROVIDED" not in prompt
    assert build_consistency_block(ConsistencyReferences()) == ""


def test_consistency_block_numbers_supplied_images() -> None:
    prior_only = build_consistency_block(ConsistencyReferences(prior_page=True))
    both = build_consistency_block(
        ConsistencyReferences(character_sheet=True, prior_page=True)
    )

    assert "Image 2: an earlier illustrated page" in prior_only
    assert "CHARACTER SHEET" not in prior_only
    assert "Image 2: the CHARACTER SHEET" in both
    assert "Image 3: an earlier illustrated page" in both
    assert "CONSISTENCY RULE" in both


def test_description_and_custom_instructions_are_included() -> None:
    description = parse_character_description(
        json.dumps(description_payload(hairColor="warm chestnut brown"))
    )

    prompt = compose_page_prompt(
        "",
        METADATA,
        "watercolor",
        description=description,
        custom_instructions="  Make it night time ",
    )

    assert "- Hair color: warm chestnut brown" in prompt
    assert "ADDITIONAL INSTRUCTIONS: Make it night time" in prompt


def test_composition_is_deterministic() -> None:
    references = ConsistencyReferences(character_sheet=True)

    first = compose_page_prompt(
        "", METADATA, "watercolor", style_profile=STYLE, references=references
    )
    second = compose_page_prompt(
        "", METADATA, "watercolor", style_profile=STYLE, references=references
    )

    assert first == second


def test_character_sheet_prompt_uses_description_when_available() -> None:
    with_text = compose_character_sheet_prompt("watercolor", None, "Curly red hair.")
    without_text = compose_character_sheet_prompt("watercolor", STYLE)

    assert "CHARACTER DETAILS:\nCurly red hair." in with_text
    assert "Study the reference photo(s) carefully" in without_text
    assert without_text.startswith(NO_TEXT_INSTRUCTION)


def test_validate_prompt_template_lists_missing_variables() -> None:
    assert validate_prompt_template("{SCENE_DESCRIPTION} only") == [
        "{EMOTIONAL_TONE}",
        "{ILLUSTRATION_STYLE}",
    ]
    assert validate_prompt_template(
        "{SCENE_DESCRIPTION} {EMOTIONAL_TONE} {ILLUSTRATION_STYLE}"
    ) == []


def test_generation_summary() -> None:
    assert generation_summary(2, METADATA, "watercolor") == (
        "Page 2: Climbing a giant oak tree (excited, watercolor style)"
    )
