"""
Edit task detection for PhotoRoute.

Maps a free-text prompt onto an :class:`EditTask` with keyword/pattern
rules checked in priority order.  Used when a caller supplies a prompt
but no explicit task.
"""

import logging
import re
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field

from photoroute.models.edit import EditRequest, EditTask

logger = logging.getLogger(__name__)


class TaskDetection(BaseModel):
    """Result of edit task detection.

    Attributes:
        task: Detected edit task.
        confidence: Detection confidence from 0.0 to 1.0.
        intent: Brief description of the detected intent.
    """

    task: EditTask = EditTask.SIMPLE_ENHANCE
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    intent: str = ""


# Rules in priority order: the first rule with any match wins, so
# "remove the background" is background removal rather than cleanup.
_PATTERNS: List[Tuple[re.Pattern, EditTask, str]] = [
    (
        re.compile(
            r"(background|remove bg|\bcut ?out\b|isolate subject|transparent)",
            re.IGNORECASE,
        ),
        EditTask.BG_REMOVE,
        "Separate the subject from its background",
    ),
    (
        re.compile(
            r"\b(remove|cleanup|clean up|erase|delete|blemish(es)?|spots?|retouch)\b",
            re.IGNORECASE,
        ),
        EditTask.CLEANUP,
        "Remove unwanted elements",
    ),
    (
        re.compile(
            r"(consistent|same person|same pet|maintain identity|keep (the )?face)",
            re.IGNORECASE,
        ),
        EditTask.SUBJECT_CONSISTENCY,
        "Keep the subject's identity consistent",
    ),
    (
        re.compile(
            r"\b(merge|fuse|fusion|hdr|combine|blend)\b",
            re.IGNORECASE,
        ),
        EditTask.MULTI_IMAGE_FUSION,
        "Combine several frames",
    ),
    (
        re.compile(
            r"(\bstyle\b|stylize|make it look like|cartoon|painting|artistic|\bfilter\b|"
            r"anime|sketch|vintage|retro)",
            re.IGNORECASE,
        ),
        EditTask.RESTYLE,
        "Apply an artistic style",
    ),
    (
        re.compile(
            r"\b(replace|change|modify|add|transform|swap)\b",
            re.IGNORECASE,
        ),
        EditTask.LOCAL_OBJECT_EDIT,
        "Edit specific objects",
    ),
]


class EditTaskDetector:
    """Detect the edit task implied by a prompt.

    Confidence grows with the number of keyword hits for the winning
    rule and is lowered slightly when later rules also matched.
    """

    def __init__(self) -> None:
        self._patterns = _PATTERNS

    def detect(self, prompt: str) -> TaskDetection:
        """Detect the edit task of a prompt.

        Args:
            prompt: Free-text edit instruction.

        Returns:
            TaskDetection with the task, confidence, and intent.
        """
        if not prompt or not prompt.strip():
            return TaskDetection(
                task=EditTask.SIMPLE_ENHANCE,
                confidence=0.0,
                intent="Empty prompt; default enhancement",
            )

        winner = None
        others = 0
        for pattern, task, intent in self._patterns:
            count = len(pattern.findall(prompt))
            if not count:
                continue
            if winner is None:
                winner = (task, intent, count)
            else:
                others += 1

        if winner is None:
            return TaskDetection(
                task=EditTask.SIMPLE_ENHANCE,
                confidence=0.1,
                intent="No strong pattern match; defaulting to enhancement",
            )

        task, intent, count = winner
        # Confidence: scale from 0.5 (1 match) to 0.95 (4+ matches)
        confidence = min(0.95, 0.5 + (count - 1) * 0.15)
        if others:
            confidence *= 0.9

        logger.debug(
            "Edit task detected",
            extra={"task": task.value, "confidence": round(confidence, 2), "other_rules": others},
        )
        return TaskDetection(task=task, confidence=round(confidence, 2), intent=intent)


def request_from_prompt(
    image: bytes,
    prompt: str,
    task: Optional[EditTask] = None,
    detector: Optional[EditTaskDetector] = None,
    **fields: Any,
) -> EditRequest:
    """Build an :class:`EditRequest`, detecting the task when none is given."""
    if task is None:
        task = (detector or EditTaskDetector()).detect(prompt).task
    return EditRequest(image=image, prompt=prompt, task=task, **fields)
