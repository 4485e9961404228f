"""
Enhancement prompt resolution and presets.

Edit presets map a one-click action (declutter, virtual staging, ...) to a
fixed instruction. Lighting presets relight the photo for a time of day.

Multi-turn edits send only the newest instruction: the image passed in is
already the output of the earlier turns, so replaying history would apply
those edits twice. A short preamble tells the model that.
"""

from __future__ import annotations

from typing import Optional, List


# ── Edit presets ──────────────────────────────────────────────
EDIT_PRESETS = {
    "declutter": (
        "Remove all unwanted objects, clutter, and personal items from this property photo "
        "while maintaining natural lighting and proportions"
    ),
    "virtual-staging": (
        "Add modern, tasteful furniture and decor to this empty space "
        "to make it more appealing to potential buyers"
    ),
    "enhance": (
        "Improve the lighting, colors, and overall quality of this property photo "
        "to make it more professional and attractive"
    ),
    "repair": (
        "Fix any visible damage, stains, or imperfections in this property photo "
        "while keeping it realistic"
    ),
}

EDIT_PRESET_DESCRIPTIONS = {
    "declutter": "Remove unwanted objects",
    "virtual-staging": "Add furniture and decor",
    "enhance": "Improve lighting and colors",
    "repair": "Fix damages and imperfections",
}

# ── Lighting presets (relighting) ─────────────────────────────
LIGHTING_PRESETS = {
    "golden-hour": (
        "Transform this property photo with golden hour lighting: warm, low-angle sunlight, "
        "soft long shadows and a gentle glow, keeping the architecture and furnishings unchanged"
    ),
    "soft-overcast": (
        "Transform this property photo with soft overcast lighting: even, diffused daylight "
        "with no harsh shadows, keeping the architecture and furnishings unchanged"
    ),
    "bright-daylight": (
        "Transform this property photo with bright daylight: clear midday sun, crisp natural "
        "light and a blue sky through any windows, keeping the architecture and furnishings unchanged"
    ),
    "cozy-evening": (
        "Transform this property photo with cozy evening lighting: warm interior lamps switched on, "
        "dusk light outside, inviting atmosphere, keeping the architecture and furnishings unchanged"
    ),
}

# Fallback when neither free text nor a preset is given
DEFAULT_INSTRUCTION = "Enhance this property photo to make it more appealing and professional"

MULTI_TURN_PREAMBLE = (
    "This photo already contains earlier edits. Keep those edits intact and apply only "
    "the following change:"
)

MAX_PROMPT_LENGTH = 2000


def get_preset_instruction(preset: Optional[str]) -> Optional[str]:
    """Instruction for a preset key, or None if unknown."""
    if not preset:
        return None
    return EDIT_PRESETS.get(preset) or LIGHTING_PRESETS.get(preset)


def is_known_preset(preset: Optional[str]) -> bool:
    return get_preset_instruction(preset) is not None


def resolve_prompt(
    prompt: Optional[str] = None,
    preset: Optional[str] = None,
    previous_prompts: Optional[List[str]] = None,
    is_multi_turn: bool = False,
) -> str:
    """
    Pick the instruction for this turn.

    Order: free text, then preset, then (multi-turn) the newest previous
    prompt, then the default instruction.
    """
    text = (prompt or "").strip()
    if text:
        return text[:MAX_PROMPT_LENGTH]

    preset_text = get_preset_instruction(preset)
    if preset_text:
        return preset_text

    if is_multi_turn and previous_prompts:
        for previous in reversed(previous_prompts):
            if isinstance(previous, str) and previous.strip():
                return previous.strip()[:MAX_PROMPT_LENGTH]

    return DEFAULT_INSTRUCTION


def build_model_prompt(instruction: str, is_multi_turn: bool = False) -> str:
    """Text actually sent to the image model."""
    if is_multi_turn:
        return f"{MULTI_TURN_PREAMBLE} {instruction}"
    return instruction


def get_presets() -> list:
    """Return the preset catalogue for the frontend to display."""
    edit = [
        {
            "key": key,
            "label": key.replace("-", " ").title(),
            "category": "edit",
            "description": EDIT_PRESET_DESCRIPTIONS.get(key, ""),
            "instruction": instruction,
        }
        for key, instruction in EDIT_PRESETS.items()
    ]
    lighting = [
        {
            "key": key,
            "label": key.replace("-", " ").title(),
            "category": "lighting",
            "description": f"{key.replace('-', ' ').capitalize()} relighting",
            "instruction": instruction,
        }
        for key, instruction in LIGHTING_PRESETS.items()
    ]
    return edit + lighting
