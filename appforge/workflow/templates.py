"""
Prompt templates for pipeline steps.

Templates are plain text with ``{{variable}}`` placeholders:

* ``{{projectIdea}}`` - the project idea the run was started with
* ``{{stepName}}`` - display name of the step being executed
* ``{{allPreviousOutputs}}`` - every earlier output as ``## <name>`` sections
* ``{{previousOutput.<step-id>}}`` - content of one earlier step's output
"""

import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union

from .errors import TemplateNotFoundError, TemplateReadError
from .models import StepExecutionContext, StepOutput
from .steps import STEP_ORDER, StepId, step_name

logger = logging.getLogger(__name__)

NO_PREVIOUS_OUTPUTS = "(No previous step output yet)"
OUTPUT_SEPARATOR = "\n\n---\n\n"

DEFAULT_TEMPLATE = """# {{stepName}}

## Project idea

{{projectIdea}}

## Previous outputs

{{allPreviousOutputs}}
"""

_PLACEHOLDER = re.compile(
    r"\{\{(projectIdea|stepName|allPreviousOutputs|previousOutput\.([^}]+))\}\}"
)


class TemplateLoader(Protocol):
    def load(self, step_id: StepId) -> str:
        ...


class StaticTemplateLoader:
    """Serves templates from a mapping, falling back to a default template."""

    def __init__(
        self,
        templates: Optional[Mapping[StepId, str]] = None,
        default: str = DEFAULT_TEMPLATE,
    ):
        self._templates: Dict[StepId, str] = dict(templates or {})
        self._default = default

    def load(self, step_id: StepId) -> str:
        return self._templates.get(StepId(step_id), self._default)


class FileTemplateLoader:
    """Loads ``<templates_dir>/<step-id>.md``."""

    def __init__(self, templates_dir: Union[str, Path]):
        self.templates_dir = Path(templates_dir)

    def template_path(self, step_id: StepId) -> Path:
        return self.templates_dir / f"{StepId(step_id).value}.md"

    def load(self, step_id: StepId) -> str:
        path = self.template_path(step_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise TemplateNotFoundError(f"No template for {StepId(step_id).value} at {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateReadError(f"Failed to read template {path}: {e}") from e


def format_all_outputs(outputs: Mapping[StepId, StepOutput]) -> str:
    """Render earlier outputs in pipeline order as ``## <name>`` sections."""
    sections = [
        f"## {step_name(step_id)}\n\n{outputs[step_id].content}"
        for step_id in STEP_ORDER
        if step_id in outputs
    ]
    if not sections:
        return NO_PREVIOUS_OUTPUTS
    return OUTPUT_SEPARATOR.join(sections)


def render_prompt(template: str, context: StepExecutionContext, step_id: StepId) -> str:
    """
    Substitute template variables for a step.

    An unknown or not-yet-produced ``previousOutput`` reference resolves to
    an empty string.
    """
    step_id = StepId(step_id)

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name == "projectIdea":
            return context.project_idea
        if name == "stepName":
            return step_name(step_id)
        if name == "allPreviousOutputs":
            return format_all_outputs(context.previous_outputs)

        reference = match.group(2).strip()
        try:
            output = context.previous_outputs.get(StepId(reference))
        except ValueError:
            output = None
        if output is None:
            logger.debug(
                f"Unresolved previous output reference {reference!r} in {step_id.value} prompt"
            )
            return ""
        return output.content

    return _PLACEHOLDER.sub(replace, template)
