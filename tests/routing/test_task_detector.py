"""Tests for EditTaskDetector."""

import pytest

from photoroute.models.edit import EditQuality, EditTask, Tier
from photoroute.routing.task_detector import EditTaskDetector, request_from_prompt


@pytest.fixture
def detector() -> EditTaskDetector:
    return EditTaskDetector()


class TestEditTaskDetector:
    """Tests for EditTaskDetector.detect."""

    @pytest.mark.parametrize(
        "prompt,task",
        [
            ("Remove the background", EditTask.BG_REMOVE),
            ("make the background transparent", EditTask.BG_REMOVE),
            ("erase the blemishes on her cheek", EditTask.CLEANUP),
            ("clean up the power lines", EditTask.CLEANUP),
            ("keep the same person across these shots", EditTask.SUBJECT_CONSISTENCY),
            ("merge these bracketed shots into an HDR", EditTask.MULTI_IMAGE_FUSION),
            ("make it look like a watercolor painting", EditTask.RESTYLE),
            ("turn this into anime", EditTask.RESTYLE),
            ("replace the sky with a sunset", EditTask.LOCAL_OBJECT_EDIT),
        ],
    )
    def test_detects_task(self, detector, prompt, task) -> None:
        assert detector.detect(prompt).task is task

    def test_background_beats_cleanup(self, detector) -> None:
        # "remove" also matches cleanup; background removal has priority
        result = detector.detect("remove the background")
        assert result.task is EditTask.BG_REMOVE
        assert result.confidence == pytest.approx(0.45)

    def test_empty_prompt(self, detector) -> None:
        result = detector.detect("   ")
        assert result.task is EditTask.SIMPLE_ENHANCE
        assert result.confidence == 0.0

    def test_no_match_defaults_to_enhance(self, detector) -> None:
        result = detector.detect("make it nicer please")
        assert result.task is EditTask.SIMPLE_ENHANCE
        assert result.confidence == 0.1

    def test_confidence_grows_with_matches(self, detector) -> None:
        one = detector.detect("cartoon")
        three = detector.detect("cartoon sketch anime")
        assert one.confidence == pytest.approx(0.5)
        assert three.confidence == pytest.approx(0.8)

    def test_confidence_capped(self, detector) -> None:
        result = detector.detect("cartoon sketch anime vintage retro painting")
        assert result.confidence == pytest.approx(0.95)


class TestRequestFromPrompt:
    """Tests for request_from_prompt."""

    def test_detects_task_when_missing(self, jpeg_bytes) -> None:
        request = request_from_prompt(jpeg_bytes, "remove the background", tier=Tier.PRO)
        assert request.task is EditTask.BG_REMOVE
        assert request.tier is Tier.PRO

    def test_explicit_task_wins(self, jpeg_bytes) -> None:
        request = request_from_prompt(
            jpeg_bytes, "remove the background", task=EditTask.RESTYLE, quality=EditQuality.ULTRA
        )
        assert request.task is EditTask.RESTYLE
        assert request.quality is EditQuality.ULTRA
