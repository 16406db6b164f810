"""Detection of step outputs written by hand into the project's outputs folder."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import ManualOutputReadError
from .models import StepOutput, utc_now
from .steps import STEP_ORDER, StepId

logger = logging.getLogger(__name__)


@dataclass
class ManualStepResult:
    detected: bool
    file_path: Optional[Path] = None
    content: Optional[str] = None
    modified_at: Optional[datetime] = None


class ManualStepDetector:
    """Looks for ``<outputs_dir>/<step-id>.md`` files."""

    def __init__(
        self,
        project_path: Union[str, Path],
        outputs_dir: Optional[Union[str, Path]] = None,
    ):
        if not str(project_path).strip():
            raise ValueError("Project path is required")
        self.project_path = Path(project_path)
        self.outputs_dir = Path(outputs_dir) if outputs_dir else self.project_path / "outputs"

    def output_path(self, step_id: StepId) -> Path:
        return self.outputs_dir / f"{StepId(step_id).value}.md"

    def has_manual_output(self, step_id: StepId) -> bool:
        return self.output_path(step_id).is_file()

    def detect(self, step_id: StepId) -> ManualStepResult:
        path = self.output_path(step_id)
        if not path.is_file():
            return ManualStepResult(detected=False)

        try:
            content = path.read_text(encoding="utf-8")
            modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
        except (OSError, UnicodeDecodeError) as e:
            raise ManualOutputReadError(f"Failed to read manual output {path}: {e}") from e

        return ManualStepResult(
            detected=True,
            file_path=path,
            content=content,
            modified_at=modified_at,
        )

    def load(self, step_id: StepId) -> Optional[StepOutput]:
        """Load a manual output; None when absent or empty."""
        result = self.detect(step_id)
        if not result.detected or not result.content:
            return None

        logger.info(f"Manual output found for {StepId(step_id).value}: {result.file_path}")
        return StepOutput(
            content=result.content,
            files=[str(result.file_path)],
            metadata={
                "source": "manual",
                "detectedAt": utc_now().isoformat(),
                "originalModifiedAt": result.modified_at.isoformat(),
            },
        )

    def detect_all(self) -> Dict[StepId, ManualStepResult]:
        """Detected manual outputs keyed by step, in pipeline order."""
        results = {}
        for step_id in STEP_ORDER:
            result = self.detect(step_id)
            if result.detected:
                results[step_id] = result
        return results
