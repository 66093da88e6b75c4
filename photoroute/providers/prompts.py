"""
Default prompt wording for generative backends.

Each vendor receives the user's prompt (or a per-task default) followed
by vendor-specific guidance.  Wording is tuning, not contract; backends
look it up here so it can be changed without touching wire code.
"""

from typing import Dict, Optional

from photoroute.models.edit import EditTask

DEFAULT_PROMPTS: Dict[EditTask, str] = {
    EditTask.SIMPLE_ENHANCE: (
        "Enhance this photo for best quality: adjust lighting, sharpness, "
        "color, and reduce noise if needed."
    ),
    EditTask.BG_REMOVE: (
        "Remove the background from this image, keeping the main subject "
        "intact with clean edges."
    ),
    EditTask.CLEANUP: (
        "Clean up this image by removing unwanted objects, blemishes, or "
        "artifacts while preserving the main subject."
    ),
    EditTask.RESTYLE: (
        "Apply an artistic style transformation to this image while "
        "maintaining the subject's recognizability."
    ),
    EditTask.LOCAL_OBJECT_EDIT: (
        "Make localized edits to specific objects in this image as requested."
    ),
    EditTask.SUBJECT_CONSISTENCY: (
        "Ensure the main subject maintains consistent appearance and "
        "identity across edits."
    ),
    EditTask.MULTI_IMAGE_FUSION: (
        "Intelligently combine and enhance multiple image elements for "
        "optimal quality."
    ),
}

# Comma-joined style modifiers appended for diffusion models
FLUX_INSTRUCTIONS: Dict[EditTask, str] = {
    EditTask.SIMPLE_ENHANCE: "natural enhancement, preserve original composition",
    EditTask.CLEANUP: "clean composition, remove distractions",
    EditTask.RESTYLE: "artistic style, creative transformation",
    EditTask.LOCAL_OBJECT_EDIT: "precise editing, seamless integration",
}
FLUX_BASE_INSTRUCTIONS = "high quality, detailed, professional photography"

OPENAI_INSTRUCTIONS: Dict[EditTask, str] = {
    EditTask.SIMPLE_ENHANCE: "Focus on natural enhancement without changing the core composition.",
    EditTask.CLEANUP: "Remove unwanted elements while maintaining image integrity.",
    EditTask.RESTYLE: "Apply creative styling while preserving the main subject.",
    EditTask.LOCAL_OBJECT_EDIT: "Make precise, localized improvements to specific areas.",
}
OPENAI_FALLBACK_INSTRUCTIONS = "Maintain high quality and natural appearance."

GEMINI_INSTRUCTIONS: Dict[EditTask, str] = {
    EditTask.SIMPLE_ENHANCE: (
        "Focus on exposure correction, color balance, sharpness, noise "
        "reduction and overall image quality."
    ),
    EditTask.BG_REMOVE: (
        "Carefully preserve subject edges and fine details like hair. Make "
        "the background transparent or a solid color."
    ),
    EditTask.CLEANUP: "Remove only unwanted elements. Preserve image composition and natural appearance.",
    EditTask.RESTYLE: "Apply creative styling while maintaining subject recognition and image coherence.",
    EditTask.LOCAL_OBJECT_EDIT: "Make precise, localized changes. Blend edits naturally with surrounding areas.",
    EditTask.SUBJECT_CONSISTENCY: (
        "Maintain facial features, body proportions and identifying "
        "characteristics of the main subject."
    ),
    EditTask.MULTI_IMAGE_FUSION: (
        "Combine the best elements from multiple frames. Enhance dynamic "
        "range and detail."
    ),
}
GEMINI_SUFFIX = (
    "Please return the edited image directly. Maintain the original image "
    "quality and resolution as much as possible."
)


def base_prompt(task: EditTask, prompt: Optional[str]) -> str:
    """Return the user's prompt, or the task default when none was given."""
    return prompt or DEFAULT_PROMPTS[task]


def flux_prompt(task: EditTask, prompt: Optional[str]) -> str:
    extra = FLUX_INSTRUCTIONS.get(task)
    modifiers = f"{FLUX_BASE_INSTRUCTIONS}, {extra}" if extra else FLUX_BASE_INSTRUCTIONS
    return f"{base_prompt(task, prompt)}, {modifiers}"


def openai_prompt(task: EditTask, prompt: Optional[str]) -> str:
    instructions = OPENAI_INSTRUCTIONS.get(task, OPENAI_FALLBACK_INSTRUCTIONS)
    return f"{base_prompt(task, prompt)}. {instructions}"


def gemini_prompt(task: EditTask, prompt: Optional[str]) -> str:
    return "\n\n".join(
        [base_prompt(task, prompt), GEMINI_INSTRUCTIONS[task], GEMINI_SUFFIX]
    )
