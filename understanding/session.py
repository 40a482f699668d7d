"""
Understanding Session - one user's pass through the pipeline.

Flow per turn:
  1. text -> IntentClassifier -> IntentResult
  2. IntentResult + context -> Planner -> PlannerDecision
  3. Sensitive ExecuteTool decisions are escalated to a confirmation;
     ConfirmDestructive -> ConfirmationGate prompt, next input is the reply
  4. Turn recorded in the ContextStore
  5. Caller executes the tool, then reports back via record_outcome()
     and shows the returned message

Each session owns its ContextStore; nothing here is shared between sessions.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from understanding.capabilities import CapabilityRegistry
from understanding.confirmation import REASK_PROMPT, ConfirmationGate, ConfirmationReply
from understanding.context_store import ContextStore
from understanding.formatter import ResponseFormatter
from understanding.intent_classifier import IntentClassifier
from understanding.models import (
    ContextEntry,
    IntentResult,
    PlannerAction,
    PlannerDecision,
    RiskLevel,
)
from understanding.planner import Planner
from understanding.remote_classifier import RemoteClassifier

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I had trouble understanding that. Could you try rephrasing?"

_FAMILIES = {
    "Media": ("play_music", "play_video", "media_control", "volume_control"),
    "System": ("open_app", "close_app", "power_control", "system_control"),
    "Files": ("file_operation", "organize_files", "find_files", "open_folder"),
    "Information": ("web_search", "weather", "system_info"),
    "Security": ("security_scan",),
    "Productivity": ("screenshot", "reminder"),
    "AI": ("generate_image", "analyze_image"),
    "Development": ("code_help",),
}
FEATURE_BY_INTENT = {
    intent: feature for feature, intents in _FAMILIES.items() for intent in intents
}
DEFAULT_FEATURE = "Chat"


def active_feature_for(intent: str) -> str:
    return FEATURE_BY_INTENT.get(intent, DEFAULT_FEATURE)


class TurnResult(BaseModel):
    """What one call to process() produced."""

    input: str
    intent: Optional[IntentResult] = None
    decision: Optional[PlannerDecision] = None
    response: str = ""
    awaiting_confirmation: bool = False
    confirmation_received: bool = False
    user_confirmed: bool = False
    error: Optional[str] = None

    @property
    def should_execute(self) -> bool:
        """True when the caller should hand the tool to the dispatcher now."""
        if self.error or self.awaiting_confirmation or self.decision is None:
            return False
        if self.decision.action == PlannerAction.EXECUTE_TOOL:
            return True
        if self.decision.action == PlannerAction.CONFIRM_DESTRUCTIVE:
            return self.confirmation_received and self.user_confirmed
        return False

    @property
    def tool(self) -> Optional[str]:
        return self.decision.tool if self.decision else None

    @property
    def tool_parameters(self) -> Dict[str, Any]:
        return dict(self.decision.tool_parameters) if self.decision else {}


class UnderstandingSession:
    """
    Coordinates classifier, planner, confirmation gate and context store
    for a single conversation.
    """

    def __init__(
        self,
        context: Optional[ContextStore] = None,
        classifier: Optional[IntentClassifier] = None,
        planner: Optional[Planner] = None,
        gate: Optional[ConfirmationGate] = None,
        formatter: Optional[ResponseFormatter] = None,
    ):
        self.context = context if context is not None else ContextStore()
        self.classifier = (
            classifier if classifier is not None else IntentClassifier(self.context)
        )
        self.planner = planner if planner is not None else Planner(self.context)
        self.gate = gate if gate is not None else ConfirmationGate()
        self.formatter = (
            formatter if formatter is not None else ResponseFormatter(self.planner.registry)
        )

        self._pending: Optional[Tuple[IntentResult, PlannerDecision]] = None
        self._last_intent: Optional[IntentResult] = None
        self._last_decision: Optional[PlannerDecision] = None

    @classmethod
    def create(
        cls,
        persist_path: Optional[str] = None,
        audit_log_path: Optional[str] = None,
        remote: Optional[RemoteClassifier] = None,
        registry: Optional[CapabilityRegistry] = None,
    ) -> "UnderstandingSession":
        """Wire a session with its own store from paths (defaults from config)."""
        context = ContextStore(persist_path=persist_path)
        planner = Planner(context, registry=registry)
        return cls(
            context=context,
            classifier=IntentClassifier(context, remote=remote),
            planner=planner,
            gate=ConfirmationGate(audit_log_path=audit_log_path),
            formatter=ResponseFormatter(planner.registry),
        )

    @property
    def is_awaiting_confirmation(self) -> bool:
        return self._pending is not None

    def clear_pending(self):
        self._pending = None

    # ── Turn processing ──────────────────────────────────────────────────

    def process(self, text: str) -> TurnResult:
        logger.info("Processing: '%s'", text)
        try:
            if self._pending is not None:
                return self._handle_reply(text)
            intent = self.classifier.classify(text)
            return self._complete_turn(text, intent)
        except Exception as e:
            return self._failed(text, e)

    async def aprocess(self, text: str) -> TurnResult:
        logger.info("Processing: '%s'", text)
        try:
            if self._pending is not None:
                return self._handle_reply(text)
            intent = await self.classifier.aclassify(text)
            return self._complete_turn(text, intent)
        except Exception as e:
            return self._failed(text, e)

    def _complete_turn(self, text: str, intent: IntentResult) -> TurnResult:
        logger.info("Intent: %s (%.2f, %s)", intent.intent, intent.confidence, intent.source)
        decision = self._escalate(self.planner.plan(intent))
        logger.info("Decision: %s", decision.action.value)

        result = TurnResult(input=text, intent=intent, decision=decision)
        hold_for_reply = False

        if decision.action == PlannerAction.CONFIRM_DESTRUCTIVE:
            if self._recently_approved(intent, decision):
                result.confirmation_received = True
                result.user_confirmed = True
                result.response = "You confirmed this a moment ago, proceeding..."
            else:
                hold_for_reply = True
                result.awaiting_confirmation = True
                result.response = self.formatter.format_full_response(intent, decision)
        else:
            result.response = self.formatter.format_full_response(intent, decision)

        self._record_turn(text, intent, result.response)
        self._last_intent = intent
        self._last_decision = decision
        if hold_for_reply:
            self._pending = (intent, decision)
        return result

    def _handle_reply(self, text: str) -> TurnResult:
        intent, decision = self._pending
        tool = decision.tool or intent.intent
        result = TurnResult(input=text, intent=intent, decision=decision)

        reply = self.gate.parse_reply(text)
        if reply == ConfirmationReply.UNCLEAR:
            result.awaiting_confirmation = True
            result.response = REASK_PROMPT
            return result

        confirmed = reply == ConfirmationReply.CONFIRMED
        self.gate.record_confirmation(tool, decision.tool_parameters, confirmed)
        self._pending = None

        result.confirmation_received = True
        result.user_confirmed = confirmed
        result.response = "Got it, proceeding..." if confirmed else "Okay, cancelled."
        return result

    def _failed(self, text: str, error: Exception) -> TurnResult:
        logger.error("Turn failed for '%s': %s", text, error, exc_info=True)
        return TurnResult(input=text, response=APOLOGY, error=str(error) or type(error).__name__)

    def _escalate(self, decision: PlannerDecision) -> PlannerDecision:
        """Turn an ExecuteTool on a sensitive operation into a confirmation."""
        if decision.action != PlannerAction.EXECUTE_TOOL or not decision.tool:
            return decision
        if not self.gate.requires_confirmation(decision.tool, decision.tool_parameters):
            return decision
        logger.info("Escalating %s to confirmation (sensitive target)", decision.tool)
        return decision.model_copy(
            update={
                "action": PlannerAction.CONFIRM_DESTRUCTIVE,
                "requires_confirmation": True,
                "reasoning": f"{decision.tool} on a sensitive target requires confirmation",
            }
        )

    def _recently_approved(self, intent: IntentResult, decision: PlannerDecision) -> bool:
        # High risk and always/conditional operations are asked every time
        tool = decision.tool or intent.intent
        if decision.risk_level >= RiskLevel.HIGH:
            return False
        if self.gate.requires_confirmation(tool, decision.tool_parameters):
            return False
        return self.gate.recently_confirmed(tool, decision.tool_parameters)

    def _record_turn(self, text: str, intent: IntentResult, response: str):
        entry = ContextEntry(
            user_input=text,
            assistant_response=response,
            intent=intent,
            active_feature=active_feature_for(intent.intent),
        )

        target = intent.entities.get("target")
        if target:
            if any(ch in target for ch in (".", "/", "\\")):
                entry.referenced_files.append(target)
            else:
                entry.referenced_folders.append(target)

        app = intent.entities.get("app")
        if app:
            entry.referenced_apps.append(app)

        self.context.add_entry(entry)

    # ── Outcome reporting ────────────────────────────────────────────────

    def record_outcome(self, success: bool, error: Optional[str] = None) -> str:
        """
        Report how the dispatched tool went; updates context and audit log.

        Returns the message to show the user.
        """
        decision = self._last_decision
        if decision is not None and decision.tool:
            self.gate.record_execution(decision.tool, decision.tool_parameters, success, error)
        self.context.update_last_outcome("Success" if success else f"Failed: {error}")

        if success:
            goal = self._last_intent.inferred_goal if self._last_intent else None
            return self.formatter.format_success(goal)
        return self.formatter.format_error(error)

    def capabilities_description(self) -> str:
        return self.formatter.format_capabilities()
