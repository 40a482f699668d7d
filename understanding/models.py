"""
Core models for the Understanding Layer.

IntentResult    - structured intent produced from one user utterance
ContextEntry    - one turn's snapshot kept by the ContextStore
PlannerDecision - the gated action chosen by the Planner
CapabilityModule - one registered automation (see capabilities.py)

Risk Levels:
    NONE     - Information retrieval, media control
    LOW      - Opening things, screenshots, sleep/lock
    MEDIUM   - Closing apps, moving/renaming files, installs
    HIGH     - Irreversible file operations (delete)
    CRITICAL - System-wide actions (shutdown, restart)
"""

import uuid
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from understanding import config
from understanding.entities import EntitySlots, slots_for


class RiskLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class PlannerAction(Enum):
    EXECUTE_TOOL = "execute_tool"
    ASK_CLARIFICATION = "ask_clarification"
    CONFIRM_DESTRUCTIVE = "confirm_destructive"
    OFFER_TO_BUILD = "offer_to_build"


# planned_action tags carried on an IntentResult
PLANNED_ACTIONS = ("execute", "clarify", "confirm", "guide")


class IntentResult(BaseModel):
    """Structured intent object produced from user input."""

    model_config = ConfigDict(validate_assignment=True)

    intent: str = "unknown"
    confidence: float = 0.0
    entities: Dict[str, str] = Field(default_factory=dict)
    inferred_goal: Optional[str] = None
    needs_confirmation: bool = False
    planned_action: str = "guide"
    missing_capability: Optional[str] = None
    # "local" or "remote"; remote_outcome records why a remote attempt was
    # not used (see remote_classifier.RemoteOutcomeKind)
    source: str = "local"
    remote_outcome: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def _bound_confidence(cls, value: float) -> float:
        return max(0.0, min(float(value), config.MAX_CONFIDENCE))

    @field_validator("entities", mode="before")
    @classmethod
    def _drop_empty_entities(cls, value: Any) -> Dict[str, str]:
        if not value:
            return {}
        return {
            str(k): str(v).strip()
            for k, v in dict(value).items()
            if v is not None and str(v).strip() and str(v).strip().lower() != "null"
        }

    @field_validator("planned_action")
    @classmethod
    def _known_planned_action(cls, value: str) -> str:
        if value not in PLANNED_ACTIONS:
            raise ValueError(f"planned_action must be one of {PLANNED_ACTIONS}")
        return value

    def typed_entities(self) -> EntitySlots:
        """Entities as the named-field variant for this intent."""
        return slots_for(self.intent, self.entities)


class ContextEntry(BaseModel):
    """Context entry for tracking conversation state."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=datetime.now)
    user_input: str = ""
    assistant_response: Optional[str] = None
    intent: Optional[IntentResult] = None
    active_feature: Optional[str] = None
    referenced_files: List[str] = Field(default_factory=list)
    referenced_folders: List[str] = Field(default_factory=list)
    referenced_apps: List[str] = Field(default_factory=list)
    last_scan_result: Optional[str] = None
    last_action_outcome: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PlannerDecision(BaseModel):
    """Planner decision output."""

    action: PlannerAction
    risk_level: RiskLevel = RiskLevel.LOW
    tool: Optional[str] = None
    tool_parameters: Dict[str, Any] = Field(default_factory=dict)
    clarification_question: Optional[str] = None
    reasoning: str = ""
    guidance_steps: List[str] = Field(default_factory=list)
    fallback_path: Optional[str] = None
    requires_confirmation: bool = False

    @model_validator(mode="after")
    def _high_risk_is_never_executed(self) -> "PlannerDecision":
        if self.action == PlannerAction.EXECUTE_TOOL and (
            self.risk_level >= RiskLevel.HIGH or self.requires_confirmation
        ):
            raise ValueError(
                f"ExecuteTool decision with risk {self.risk_level.name} must be confirmed first"
            )
        return self


class CapabilityModule(BaseModel):
    """Capability module definition. Read-only once registered."""

    model_config = ConfigDict(frozen=True)

    name: str
    category: str
    description: str
    implemented: bool = True
    build_plan: Optional[str] = None
    supported_intents: Tuple[str, ...] = ()


def planned_action_for(result: IntentResult) -> str:
    """
    Derive the planned_action tag:
    confirm > guide (missing capability) > clarify (< 0.5) > execute (>= 0.7) > guide
    """
    if result.needs_confirmation:
        return "confirm"
    if result.missing_capability:
        return "guide"
    if result.confidence < config.CLARIFY_THRESHOLD:
        return "clarify"
    if result.confidence >= config.EXECUTE_THRESHOLD:
        return "execute"
    return "guide"
