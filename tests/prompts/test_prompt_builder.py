"""Tests for prompt assembly: title split, reference ordering markers, edit prompts."""
from thumbgen.services.prompts.builder import (
    PromptInput,
    build_edit_prompt,
    build_generation_prompt,
    emotion_description,
    pose_description,
    reference_markers,
    sanitize_edit_prompt,
    split_title,
)


def test_split_title_on_first_colon():
    assert split_title("Main: sub: more") == ("Main", "sub: more")
    assert split_title("No subtext") == ("No subtext", None)
    assert split_title("Trailing:") == ("Trailing", None)


def test_emotion_and_pose_lookup():
    assert "wide eyes" in emotion_description("Mind Blown")
    assert emotion_description("melancholic") == "melancholic"
    assert emotion_description(None) == ""
    assert pose_description("thumbs-up") == "giving a thumbs up gesture"
    assert pose_description("none") == ""


def test_reference_markers_order():
    markers = reference_markers(2, [3, 1])
    lines = markers.splitlines()
    assert lines[0] == "[REFERENCE IMAGES ORDER]"
    assert lines[1].startswith("- Images 1, 2: style references")
    assert lines[2].startswith("- Images 3-5: character 1")
    assert lines[3].startswith("- Images 6: character 2")
    assert reference_markers(0, []) == ""


def test_generation_prompt_blocks():
    prompt = build_generation_prompt(
        PromptInput(
            title="I tried it: results",
            style="bold",
            emotion="shocked",
            pose="pointing",
            aspect_ratio="9:16",
            quality_class="2K",
            style_reference_count=1,
            character_image_counts=[2],
        )
    )
    assert prompt.startswith("[REFERENCE IMAGES ORDER]")
    assert "main_title: I tried it" in prompt
    assert "subtext: results" in prompt
    assert "style: bold" in prompt
    assert "[CHARACTERS]" in prompt
    assert "pose: pointing at something" in prompt
    assert "aspect_ratio=9:16, resolution=2K" in prompt


def test_generation_prompt_without_references():
    prompt = build_generation_prompt(PromptInput(title="Plain"))
    assert "[REFERENCE IMAGES ORDER]" not in prompt
    assert "[CHARACTERS]" not in prompt
    assert prompt.startswith("[TASK]")


def test_edit_prompt_sanitized():
    assert sanitize_edit_prompt("  brighter\x00\x1b colors \n") == "brighter colors"
    assert "Apply the following modifications: brighter" in build_edit_prompt("brighter")
