from pathlib import Path
from unittest.mock import patch

import pytest

from appforge.workflow.errors import ManualOutputReadError
from appforge.workflow.manual_detector import ManualStepDetector
from appforge.workflow.steps import StepId


class TestManualStepDetector:
    """Test cases for ManualStepDetector."""

    @pytest.fixture
    def detector(self, tmp_path: Path):
        return ManualStepDetector(tmp_path)

    def write_output(self, detector, step_id, content):
        path = detector.output_path(step_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def test_output_path(self, detector, tmp_path: Path):
        assert detector.output_path(StepId.PRD) == tmp_path / "outputs" / "step-04-prd.md"

    def test_custom_outputs_dir(self, tmp_path: Path):
        detector = ManualStepDetector(tmp_path, outputs_dir=tmp_path / "handwritten")
        assert detector.output_path(StepId.PRD).parent == tmp_path / "handwritten"

    def test_requires_project_path(self):
        with pytest.raises(ValueError):
            ManualStepDetector("")

    def test_nothing_detected(self, detector):
        assert not detector.has_manual_output(StepId.PRD)
        assert detector.detect(StepId.PRD).detected is False
        assert detector.load(StepId.PRD) is None

    def test_load_manual_output(self, detector):
        path = self.write_output(detector, StepId.PRD, "# Requirements\n")

        output = detector.load(StepId.PRD)

        assert output.content == "# Requirements\n"
        assert output.files == [str(path)]
        assert output.metadata["source"] == "manual"
        assert "detectedAt" in output.metadata
        assert "originalModifiedAt" in output.metadata

    def test_empty_file_is_ignored(self, detector):
        self.write_output(detector, StepId.PRD, "")
        assert detector.detect(StepId.PRD).detected is True
        assert detector.load(StepId.PRD) is None

    def test_detect_all(self, detector):
        self.write_output(detector, StepId.UX_DESIGN, "ux")
        self.write_output(detector, StepId.BRAINSTORMING, "ideas")

        assert list(detector.detect_all()) == [StepId.BRAINSTORMING, StepId.UX_DESIGN]

    def test_unreadable_file(self, detector):
        self.write_output(detector, StepId.PRD, "content")

        with patch.object(Path, "read_text", side_effect=PermissionError("denied")):
            with pytest.raises(ManualOutputReadError) as exc_info:
                detector.detect(StepId.PRD)

        assert isinstance(exc_info.value.__cause__, PermissionError)
