"""
Prompt assembly for thumbnail generation and edit.
Blocks: [REFERENCE IMAGES ORDER], [TASK], [TITLE], [STYLE], [CHARACTERS], [OUTPUT].
"""
import re
from dataclasses import dataclass, field

EMOTION_DESCRIPTIONS: dict[str, str] = {
    "excited": "extremely excited and enthusiastic facial expression with wide eyes",
    "thinking": "thoughtful thinking expression with hand on chin or contemplative look",
    "shocked": "shocked and surprised expression with mouth open and wide eyes",
    "fire": "intense fired-up expression, hyped and energetic",
    "cool": "cool and confident expression with a slight smirk",
    "mind-blown": "mind blown expression with wide eyes and amazed look",
    "happy": "genuinely happy and joyful expression with a big smile",
    "serious": "serious and focused expression with intense eyes",
    "angry": "angry and frustrated expression with furrowed brows",
    "curious": "curious and intrigued expression with raised eyebrow",
    "sad": "sad and emotional expression",
    "confident": "cool and confident expression with a slight smirk",
    "neutral": "neutral expression",
    "confused": "confused and puzzled expression with furrowed brows",
    "surprised": "surprised expression with raised eyebrows and open mouth",
    "worried": "worried and anxious expression with tense facial features",
    "determined": "determined and resolute expression with focused eyes",
    "playful": "playful and mischievous expression with a grin",
    "skeptical": "skeptical and doubtful expression with raised eyebrow",
    "intense": "intense and focused expression with piercing eyes",
    "friendly": "friendly and warm expression with a welcoming smile",
    "dramatic": "dramatic and expressive facial expression",
    "calm": "calm and peaceful expression with relaxed features",
}

POSE_DESCRIPTIONS: dict[str, str] = {
    "pointing": "pointing at something with hand extended",
    "thumbs-up": "giving a thumbs up gesture",
    "arms-crossed": "arms crossed confidently",
    "hands-on-hips": "hands on hips in a confident stance",
    "leaning-in": "leaning forward towards camera",
    "looking-away": "looking away to the side dramatically",
    "hands-up": "hands raised up in the air",
    "thinking": "hand on chin in a thinking pose",
    "shrugging": "shrugging with palms up",
    "facepalm": "hand on face in a facepalm gesture",
    "celebration": "arms raised in celebration",
    "peace-sign": "making a peace sign with fingers",
    "flexing": "flexing muscles in a strong pose",
    "waving": "waving hand in greeting",
    "fist-pump": "fist raised in the air in victory",
    "open-arms": "arms spread wide in welcoming gesture",
    "side-profile": "turned to the side showing profile",
    "over-shoulder": "looking back over shoulder",
}

TITLE_RULES = (
    "Use the title text EXACTLY as provided. The main title is prominent, the subtext "
    "(if any) secondary and smaller. NO EXTRA TEXT. DO NOT CHANGE OR ADD TEXT."
)
QUALITY_RULES = (
    "ultra high quality, professional YouTube thumbnail, eye-catching, high contrast, "
    "designed to maximize click-through rate"
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass
class PromptInput:
    title: str
    style: str | None = None
    custom_style: str | None = None
    palette: str | None = None
    emotion: str | None = None
    pose: str | None = None
    thumbnail_text: str | None = None
    aspect_ratio: str = "16:9"
    quality_class: str = "1K"
    style_reference_count: int = 0
    # images per character, in reference order after the style references
    character_image_counts: list[int] = field(default_factory=list)


def emotion_description(emotion: str | None) -> str:
    if not emotion:
        return ""
    key = re.sub(r"\s+", "-", emotion.strip().lower())
    return EMOTION_DESCRIPTIONS.get(key, emotion.strip())


def pose_description(pose: str | None) -> str:
    if not pose or pose == "none":
        return ""
    return POSE_DESCRIPTIONS.get(pose, pose)


def split_title(title: str) -> tuple[str, str | None]:
    """'Main: sub' -> ('Main', 'sub'); only the first colon splits."""
    main, sep, rest = title.strip().partition(":")
    subtext = rest.strip() if sep else ""
    return main.strip(), subtext or None


def reference_markers(style_count: int, character_counts: list[int]) -> str:
    if style_count == 0 and sum(character_counts) == 0:
        return ""
    lines = ["[REFERENCE IMAGES ORDER]"]
    position = 1
    if style_count:
        positions = ", ".join(str(i) for i in range(1, style_count + 1))
        lines.append(f"- Images {positions}: style references (match visual style, color grading, composition)")
        position += style_count
    for index, count in enumerate(character_counts, start=1):
        if count <= 0:
            continue
        span = f"{position}" if count == 1 else f"{position}-{position + count - 1}"
        lines.append(f"- Images {span}: character {index} facial references ({count} images of the same person)")
        position += count
    return "\n".join(lines)


def build_generation_prompt(data: PromptInput) -> str:
    blocks: list[str] = []
    markers = reference_markers(data.style_reference_count, data.character_image_counts)
    if markers:
        blocks.append(markers)

    blocks.append("[TASK]\nGenerate a single YouTube thumbnail image.")

    main_title, subtext = split_title(data.title)
    title_lines = [f"main_title: {main_title}"]
    if subtext:
        title_lines.append(f"subtext: {subtext}")
    if data.thumbnail_text and data.thumbnail_text.strip():
        title_lines.append(f"overlay_text: {data.thumbnail_text.strip()}")
    title_lines.append(TITLE_RULES)
    blocks.append("[TITLE]\n" + "\n".join(title_lines))

    style_lines = []
    if data.style:
        style_lines.append(f"style: {data.style.strip()}")
    if data.custom_style and data.custom_style.strip():
        style_lines.append(f"notes: {data.custom_style.strip()}")
    if data.palette:
        style_lines.append(f"color_palette: {data.palette.strip()}")
    if data.style_reference_count:
        style_lines.append("Match visual style, color grading, composition and aesthetic of the style references.")
    if style_lines:
        blocks.append("[STYLE]\n" + "\n".join(style_lines))

    characters = [c for c in data.character_image_counts if c > 0]
    emotion = emotion_description(data.emotion)
    pose = pose_description(data.pose)
    if characters or emotion or pose:
        lines = []
        if characters:
            lines.append(
                "Each character has multiple reference images of the same person. Use ALL of them "
                "to recreate facial features and likeness."
            )
            if len(characters) > 1:
                lines.append(f"There are {len(characters)} different characters to include in the scene.")
            if data.style_reference_count:
                lines.append("If a character already appears in the style references, replace them with the new character(s).")
        if emotion:
            lines.append(f"emotional_tone: {emotion}")
        if pose:
            lines.append(f"pose: {pose}")
        blocks.append("[CHARACTERS]\n" + "\n".join(lines))

    blocks.append(
        f"[OUTPUT]\naspect_ratio={data.aspect_ratio}, resolution={data.quality_class}\n{QUALITY_RULES}"
    )
    return "\n\n".join(blocks)


def sanitize_edit_prompt(value: str) -> str:
    return _CONTROL_CHARS.sub("", value or "").strip()


def build_edit_prompt(edit_prompt: str) -> str:
    return (
        "Generate a new thumbnail image based on the provided reference image. "
        f"Apply the following modifications: {edit_prompt}\n\n"
        "Requirements:\n"
        "- Maintain the same aspect ratio and composition style as the reference image\n"
        "- Keep the core visual elements and layout\n"
        "- Apply the requested modifications while preserving the overall thumbnail aesthetic\n"
        "- Generate a high-quality thumbnail image that matches the style and quality of the reference"
    )
