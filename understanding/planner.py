"""
Planner for the Understanding Layer.

Chooses the simplest safe path for a classified intent:
    ExecuteTool        - everything known, low enough risk
    AskClarification   - unsure what the user means, or parameters missing
    ConfirmDestructive - risky or irreversible, user must say yes first
    OfferToBuild       - no implemented capability for this intent

Deterministic and stateless across calls; it only reads the ContextStore
and the CapabilityRegistry.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from understanding import config
from understanding.capabilities import CapabilityRegistry
from understanding.context_store import ContextStore
from understanding.models import IntentResult, PlannerAction, PlannerDecision, RiskLevel
from understanding.vocabulary import UNKNOWN_INTENT, canonical_action

logger = logging.getLogger(__name__)


# intent -> (entity that must be present, question to ask when it is not)
CLARIFICATION_QUESTIONS = MappingProxyType({
    "play_music": ("query", "What would you like me to play?"),
    "open_app": ("app", "Which app should I open?"),
    "file_operation": ("target", "Which file or folder?"),
    "organize_files": ("target", "Which folder should I organize?"),
    "web_search": ("query", "What should I search for?"),
    "weather": ("location", "For which location?"),
})

REQUIRED_PARAMETERS = MappingProxyType({
    "play_music": ("query",),
    "open_app": ("app",),
    "close_app": ("app",),
    "file_operation": ("target", "action"),
    "web_search": ("query",),
    "power_control": ("action",),
})

# intent -> logical tool identifier understood by the dispatcher
TOOL_MAP = MappingProxyType({
    "play_music": "MediaPlayerTool",
    "play_video": "MediaPlayerTool",
    "media_control": "MediaPlayerTool",
    "volume_control": "SystemTool.Volume",
    "open_app": "SystemTool.OpenApp",
    "close_app": "SystemTool.CloseApp",
    "power_control": "SystemTool.Power",
    "system_control": "SystemTool.Settings",
    "file_operation": "FileSystemTool",
    "organize_files": "FileSystemTool.Organize",
    "find_files": "FileSystemTool.Find",
    "open_folder": "FileSystemTool.OpenFolder",
    "web_search": "WebSearchTool",
    "weather": "WebSearchTool.Weather",
    "system_info": "SystemTool.Info",
    "security_scan": "SecurityScanner",
    "screenshot": "ScreenCaptureTool",
    "reminder": "ReminderTool",
    "clipboard": "ClipboardTool",
    "generate_image": "ImageGeneratorTool",
    "analyze_image": "ImageAnalyzerTool",
    "code_help": "CodeAssistant",
    "install_software": "SoftwareInstaller",
})
DEFAULT_TOOL = "AIChat"

# intent -> fixed risk (intents with action-dependent risk are in _assess_risk)
INTENT_RISK = MappingProxyType({
    "close_app": RiskLevel.MEDIUM,
    "system_control": RiskLevel.MEDIUM,
    "install_software": RiskLevel.MEDIUM,
    "web_search": RiskLevel.NONE,
    "weather": RiskLevel.NONE,
    "play_music": RiskLevel.NONE,
    "media_control": RiskLevel.NONE,
    "volume_control": RiskLevel.NONE,
    "screenshot": RiskLevel.LOW,
    "open_app": RiskLevel.LOW,
})
POWER_ACTION_RISK = MappingProxyType({
    "shutdown": RiskLevel.CRITICAL,
    "restart": RiskLevel.CRITICAL,
    "sleep": RiskLevel.LOW,
    "lock": RiskLevel.LOW,
})
FILE_ACTION_RISK = MappingProxyType({
    "delete": RiskLevel.HIGH,
    "move": RiskLevel.MEDIUM,
    "rename": RiskLevel.MEDIUM,
})

FALLBACK_PATHS = MappingProxyType({
    "reminder": "Use the operating system's task scheduler or set a phone reminder",
    "install_software": "Download from the official website and run the installer",
    "email": "Send it from your mail client",
})
DEFAULT_FALLBACK_PATH = "I can guide you through the manual steps"


def _manual_steps(intent: IntentResult) -> List[str]:
    if intent.intent == "reminder":
        return [
            "Open your system's task scheduler (or a calendar app)",
            "Create a new task or event",
            "Set the time you want to be reminded",
            "Add a notification as the action",
        ]
    if intent.intent == "install_software":
        return [
            f"Go to the official website for {intent.entities.get('query', 'the software')}",
            "Download the installer",
            "Run the installer and follow prompts",
            "I can help if you run into issues",
        ]
    if intent.intent == "email":
        return [
            "Open your mail client",
            "Compose a new message",
            "Add the recipient, subject and body, then send",
        ]
    return ["Let me know what specific help you need"]


class Planner:
    """Maps an IntentResult to a gated PlannerDecision."""

    def __init__(self, context: ContextStore, registry: Optional[CapabilityRegistry] = None):
        self.context = context
        self.registry = registry if registry is not None else CapabilityRegistry()

    def plan(self, intent: IntentResult) -> PlannerDecision:
        logger.debug(
            "Planning for intent: %s (confidence %.2f)", intent.intent, intent.confidence
        )
        known = intent.intent != UNKNOWN_INTENT
        capability = self.registry.get(intent.intent) if known else None
        risk = self._assess_risk(intent)

        # System-wide actions and known-missing capabilities are gated first,
        # whatever the confidence
        if known and risk == RiskLevel.CRITICAL:
            return self._confirm(intent, risk)
        if capability is not None and not capability.implemented:
            return self._offer_to_build(intent)

        if intent.confidence < config.CLARIFY_THRESHOLD or not known:
            return PlannerDecision(
                action=PlannerAction.ASK_CLARIFICATION,
                risk_level=risk,
                clarification_question=self._clarification_question(intent),
                reasoning="Low confidence or unknown intent - need more information",
            )

        if capability is None:
            return self._offer_to_build(intent)

        if intent.needs_confirmation or risk >= RiskLevel.HIGH:
            return self._confirm(intent, risk)

        missing = self._missing_parameters(intent)
        if missing:
            return PlannerDecision(
                action=PlannerAction.ASK_CLARIFICATION,
                risk_level=risk,
                clarification_question=f"I need to know: {', '.join(missing)}",
                reasoning="Missing required parameters",
            )

        tool = TOOL_MAP.get(intent.intent, DEFAULT_TOOL)
        decision = PlannerDecision(
            action=PlannerAction.EXECUTE_TOOL,
            risk_level=risk,
            tool=tool,
            tool_parameters=self._tool_parameters(intent),
            reasoning=f"All requirements met, executing {tool}",
        )
        logger.info("Plan: %s -> %s", intent.intent, tool)
        return decision

    # ── Decision builders ────────────────────────────────────────────────

    def _confirm(self, intent: IntentResult, risk: RiskLevel) -> PlannerDecision:
        logger.info("Plan: %s needs confirmation (%s risk)", intent.intent, risk.name)
        return PlannerDecision(
            action=PlannerAction.CONFIRM_DESTRUCTIVE,
            risk_level=risk,
            tool=TOOL_MAP.get(intent.intent, DEFAULT_TOOL),
            tool_parameters=self._tool_parameters(intent),
            reasoning=f"Action requires confirmation due to {risk.name.capitalize()} risk level",
            requires_confirmation=True,
        )

    def _offer_to_build(self, intent: IntentResult) -> PlannerDecision:
        capability = self.registry.get(intent.intent)
        reasoning = f"Capability '{intent.intent}' is not yet implemented"
        if capability is not None and capability.build_plan:
            reasoning += f". Build plan: {capability.build_plan}"
        logger.info("Plan: offer to build '%s'", intent.intent)
        return PlannerDecision(
            action=PlannerAction.OFFER_TO_BUILD,
            risk_level=self._assess_risk(intent),
            reasoning=reasoning,
            fallback_path=FALLBACK_PATHS.get(intent.intent, DEFAULT_FALLBACK_PATH),
            guidance_steps=_manual_steps(intent),
        )

    # ── Tables ───────────────────────────────────────────────────────────

    def _clarification_question(self, intent: IntentResult) -> str:
        if intent.intent == UNKNOWN_INTENT:
            feature = self.context.state.last_active_feature
            if feature:
                return f"I'm not sure what you mean. Are you asking about {feature}?"
            return "Could you tell me more about what you'd like to do?"

        entry = CLARIFICATION_QUESTIONS.get(intent.intent)
        if entry is not None and not intent.entities.get(entry[0]):
            return entry[1]
        return "Could you be more specific?"

    @staticmethod
    def _assess_risk(intent: IntentResult) -> RiskLevel:
        action = canonical_action(intent.intent, intent.entities.get("action"))
        if intent.intent == "power_control" and action in POWER_ACTION_RISK:
            return POWER_ACTION_RISK[action]
        if intent.intent == "file_operation" and action in FILE_ACTION_RISK:
            return FILE_ACTION_RISK[action]
        return INTENT_RISK.get(intent.intent, RiskLevel.LOW)

    @staticmethod
    def _missing_parameters(intent: IntentResult) -> List[str]:
        return [
            name
            for name in REQUIRED_PARAMETERS.get(intent.intent, ())
            if not intent.entities.get(name)
        ]

    def _tool_parameters(self, intent: IntentResult) -> Dict[str, Any]:
        parameters: Dict[str, Any] = dict(intent.entities)
        if parameters.get("action"):
            parameters["action"] = canonical_action(intent.intent, parameters["action"])
        state = self.context.state
        if "target" not in parameters and state.last_referenced_folder:
            parameters["contextFolder"] = state.last_referenced_folder
        if "app" not in parameters and state.last_referenced_app:
            parameters["contextApp"] = state.last_referenced_app
        return parameters
