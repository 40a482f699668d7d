"""
Response Formatter - user-facing wording for planner decisions.

Responses follow one shape: restate the goal, say how it will be handled,
then give the next step ("Understood: open the downloads folder. Running
FileSystemTool.OpenFolder now.").
Outcome reports and raw tool errors are turned into short plain sentences.
"""

from typing import Dict, List, Optional

from understanding.capabilities import CapabilityRegistry
from understanding.confirmation import ConfirmationGate
from understanding.models import CapabilityModule, IntentResult, PlannerAction, PlannerDecision

DEFAULT_GOAL = "Help with your request"
MAX_ERROR_LENGTH = 50

APPROACHES = {
    PlannerAction.ASK_CLARIFICATION: "I need a little more to go on.",
    PlannerAction.CONFIRM_DESTRUCTIVE: "This one needs your go-ahead.",
    PlannerAction.OFFER_TO_BUILD: "I can't do that automatically yet, but there's a manual route.",
}

# (substrings, plain wording); first match wins, checked against the lowercased error
_ERROR_WORDING = (
    (("not found", "notfound", "no such file"), "I couldn't find what you asked for."),
    (("access denied", "accessdenied", "permission"), "I don't have permission to do that."),
    (("timeout", "timed out"), "That took too long. Want me to try again?"),
    (("network", "connection"), "There seems to be a network problem."),
)


def simplify_error(error: Optional[str]) -> str:
    """Plain wording for a raw tool error; unknown errors are truncated."""
    text = (error or "").strip()
    if not text:
        return "Something went wrong."
    lower = text.lower()
    for needles, wording in _ERROR_WORDING:
        if any(needle in lower for needle in needles):
            return wording
    if len(text) > MAX_ERROR_LENGTH:
        return text[:MAX_ERROR_LENGTH - 3] + "..."
    return text


def _sentence(goal: str) -> str:
    return goal[:1].lower() + goal[1:]


class ResponseFormatter:
    """Words decisions, outcomes and the capability list for the user."""

    def __init__(self, registry: Optional[CapabilityRegistry] = None):
        self.registry = registry if registry is not None else CapabilityRegistry()

    def format_goal(self, intent: IntentResult) -> str:
        goal = (intent.inferred_goal or "").strip()
        if not goal or goal == DEFAULT_GOAL:
            return ""
        return f"Understood: {_sentence(goal)}."

    @staticmethod
    def format_approach(decision: PlannerDecision) -> str:
        return APPROACHES.get(decision.action, "")

    @staticmethod
    def format_next_step(decision: PlannerDecision) -> str:
        if decision.action == PlannerAction.EXECUTE_TOOL:
            return f"Running {decision.tool} now."
        if decision.action == PlannerAction.ASK_CLARIFICATION:
            return decision.clarification_question or "Could you be more specific?"
        if decision.action == PlannerAction.CONFIRM_DESTRUCTIVE:
            return ConfirmationGate.prompt_for(decision)
        if decision.action == PlannerAction.OFFER_TO_BUILD:
            return decision.fallback_path or "I can walk you through doing it by hand."
        return ""

    def format_options(self, intent: IntentResult, decision: PlannerDecision) -> List[str]:
        """Numbered manual steps plus the build offer, for OfferToBuild only."""
        if decision.action != PlannerAction.OFFER_TO_BUILD:
            return []
        options = [f"{i}. {step}" for i, step in enumerate(decision.guidance_steps, 1)]
        capability = self.registry.get(intent.intent)
        if capability is not None and capability.build_plan:
            options.append(f"Plan to add it: {capability.build_plan}.")
        options.append("Want me to add this capability?")
        return options

    def format_full_response(self, intent: IntentResult, decision: PlannerDecision) -> str:
        if intent.intent == "help" and decision.action == PlannerAction.EXECUTE_TOOL:
            return self.format_capabilities()

        parts = []
        if decision.action != PlannerAction.ASK_CLARIFICATION:
            parts.append(self.format_goal(intent))
        parts.append(self.format_approach(decision))
        parts.append(self.format_next_step(decision))
        headline = " ".join(part for part in parts if part)

        options = self.format_options(intent, decision)
        if not options:
            return headline
        return "\n\n".join([headline, "\n".join(options)])

    # ── Outcomes ─────────────────────────────────────────────────────────

    @staticmethod
    def format_success(goal: Optional[str] = None) -> str:
        if goal and goal != DEFAULT_GOAL:
            return f"Done: {_sentence(goal)}."
        return "Done."

    @staticmethod
    def format_error(error: Optional[str]) -> str:
        return f"That didn't work. {simplify_error(error)}"

    # ── Capabilities ─────────────────────────────────────────────────────

    def format_capabilities(self) -> str:
        """What the assistant can do, grouped by category in registry order."""
        available: Dict[str, List[CapabilityModule]] = {}
        planned: List[CapabilityModule] = []
        for module in self.registry.all():
            if module.implemented:
                available.setdefault(module.category, []).append(module)
            else:
                planned.append(module)

        lines = ["Here's what I can do:", ""]
        for category, modules in available.items():
            lines.append(f"{category}: {', '.join(m.description.lower() for m in modules)}")
        if planned:
            lines.append("")
            lines.append(
                "Not built yet: " + ", ".join(m.description.lower() for m in planned)
            )
        return "\n".join(lines)
