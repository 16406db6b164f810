"""
Fixed step catalogue for the product-development pipeline.

The pipeline always consists of the same twelve steps in the same order.
Step identity is an exhaustive enum; step definitions live in a tuple
indexed by ordinal so lookups never miss.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Tuple


class StepId(str, Enum):
    """Identifiers of the pipeline steps, declared in pipeline order."""
    BRAINSTORMING = "step-01-brainstorming"
    RESEARCH = "step-02-research"
    PRODUCT_BRIEF = "step-03-product-brief"
    PRD = "step-04-prd"
    UX_DESIGN = "step-05-ux-design"
    ARCHITECTURE = "step-06-architecture"
    EPICS_STORIES = "step-07-epics-stories"
    SPRINT_PLANNING = "step-08-sprint-planning"
    TECH_SPEC = "step-09-tech-spec"
    DEVELOPMENT = "step-10-development"
    CODE_REVIEW = "step-11-code-review"
    QA_TESTING = "step-12-qa-testing"

    @property
    def ordinal(self) -> int:
        """0-based position of the step in the pipeline."""
        return _ORDINALS[self]

    @property
    def number(self) -> int:
        """1-based step number for display."""
        return _ORDINALS[self] + 1


class StepCategory(str, Enum):
    """Step category grouping."""
    BUSINESS = "business"
    DESIGN = "design"
    TECHNICAL = "technical"


@dataclass(frozen=True)
class Step:
    """Immutable definition of one pipeline step."""
    id: StepId
    ordinal: int
    name: str
    description: str
    category: StepCategory
    depends_on: FrozenSet[StepId] = field(default_factory=frozenset)


STEP_ORDER: Tuple[StepId, ...] = tuple(StepId)
TOTAL_STEPS = len(STEP_ORDER)
_ORDINALS: Dict[StepId, int] = {step_id: index for index, step_id in enumerate(STEP_ORDER)}

_STEP_DETAILS: Dict[StepId, Tuple[str, str, StepCategory, Tuple[StepId, ...]]] = {
    StepId.BRAINSTORMING: (
        "Brainstorming", "Explore and sharpen the project idea",
        StepCategory.BUSINESS, (),
    ),
    StepId.RESEARCH: (
        "Research", "Market, technical and domain research",
        StepCategory.BUSINESS, (StepId.BRAINSTORMING,),
    ),
    StepId.PRODUCT_BRIEF: (
        "Product Brief", "Product summary and vision",
        StepCategory.BUSINESS, (StepId.BRAINSTORMING, StepId.RESEARCH),
    ),
    StepId.PRD: (
        "Requirements", "Detailed product requirements document",
        StepCategory.BUSINESS, (StepId.PRODUCT_BRIEF,),
    ),
    StepId.UX_DESIGN: (
        "UX Design", "User experience design",
        StepCategory.DESIGN, (StepId.PRD,),
    ),
    StepId.ARCHITECTURE: (
        "Architecture", "System architecture",
        StepCategory.DESIGN, (StepId.PRD,),
    ),
    StepId.EPICS_STORIES: (
        "Epics & Stories", "Epics and user stories",
        StepCategory.DESIGN, (StepId.PRD, StepId.ARCHITECTURE),
    ),
    StepId.SPRINT_PLANNING: (
        "Sprint Planning", "Sprint plan",
        StepCategory.TECHNICAL, (StepId.EPICS_STORIES,),
    ),
    StepId.TECH_SPEC: (
        "Tech Spec", "Technical specification",
        StepCategory.TECHNICAL, (StepId.ARCHITECTURE, StepId.EPICS_STORIES),
    ),
    StepId.DEVELOPMENT: (
        "Development", "Code development",
        StepCategory.TECHNICAL, (StepId.TECH_SPEC,),
    ),
    StepId.CODE_REVIEW: (
        "Code Review", "Code review",
        StepCategory.TECHNICAL, (StepId.DEVELOPMENT,),
    ),
    StepId.QA_TESTING: (
        "QA Testing", "Testing and quality assurance",
        StepCategory.TECHNICAL, (StepId.DEVELOPMENT,),
    ),
}

STEPS: Tuple[Step, ...] = tuple(
    Step(
        id=step_id,
        ordinal=index,
        name=_STEP_DETAILS[step_id][0],
        description=_STEP_DETAILS[step_id][1],
        category=_STEP_DETAILS[step_id][2],
        depends_on=frozenset(_STEP_DETAILS[step_id][3]),
    )
    for index, step_id in enumerate(STEP_ORDER)
)


def get_step(step_id: StepId) -> Step:
    return STEPS[StepId(step_id).ordinal]


def step_name(step_id: StepId) -> str:
    return get_step(step_id).name


def step_at(index: int) -> StepId:
    """Return the step id at a 0-based pipeline position."""
    if index < 0 or index >= TOTAL_STEPS:
        raise IndexError(f"Step index out of range: {index}")
    return STEP_ORDER[index]


def steps_in_category(category: StepCategory) -> Tuple[Step, ...]:
    return tuple(step for step in STEPS if step.category == category)
