"""
Tests for the Planner.

Each test builds an IntentResult by hand and checks the gated decision.
"""

import os
import shutil
import tempfile
import unittest

from pydantic import ValidationError

from understanding.capabilities import CapabilityRegistry
from understanding.context_store import ContextStore
from understanding.models import (
    CapabilityModule,
    ContextEntry,
    IntentResult,
    PlannerAction,
    PlannerDecision,
    RiskLevel,
)
from understanding.planner import Planner


def _intent(name, confidence=0.9, needs_confirmation=False, **entities):
    return IntentResult(
        intent=name,
        confidence=confidence,
        entities=entities,
        needs_confirmation=needs_confirmation,
    )


class _PlannerTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.store = ContextStore(persist_path=os.path.join(self.tmp, "ctx.json"))
        self.planner = Planner(self.store)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)


# -- Confirmation and risk ---------------------------------------------------

class TestRiskGating(_PlannerTestCase):
    def test_shutdown_confirmed_regardless_of_confidence(self):
        for confidence in (0.1, 0.45, 0.6, 0.95):
            decision = self.planner.plan(
                _intent("power_control", confidence, needs_confirmation=True, action="shutdown")
            )
            self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE, confidence)
            self.assertEqual(decision.risk_level, RiskLevel.CRITICAL)
            self.assertTrue(decision.requires_confirmation)
            self.assertEqual(decision.tool, "SystemTool.Power")
            self.assertEqual(decision.tool_parameters["action"], "shutdown")

    def test_restart_is_critical_without_flag(self):
        decision = self.planner.plan(_intent("power_control", action="restart"))
        self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE)
        self.assertEqual(decision.risk_level, RiskLevel.CRITICAL)

    def test_sleep_is_low_risk_but_flagged(self):
        decision = self.planner.plan(
            _intent("power_control", needs_confirmation=True, action="sleep")
        )
        self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE)
        self.assertEqual(decision.risk_level, RiskLevel.LOW)

    def test_delete_is_high_risk(self):
        decision = self.planner.plan(
            _intent("file_operation", target="report.txt", action="delete")
        )
        self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE)
        self.assertEqual(decision.risk_level, RiskLevel.HIGH)
        self.assertEqual(decision.tool, "FileSystemTool")

    def test_move_executes_at_medium_risk(self):
        decision = self.planner.plan(_intent("file_operation", target="downloads", action="move"))
        self.assertEqual(decision.action, PlannerAction.EXECUTE_TOOL)
        self.assertEqual(decision.risk_level, RiskLevel.MEDIUM)

    def test_free_form_shutdown_wording_is_critical(self):
        for wording in ("Shutdown", "shut down", "SHUTDOWN", "  Shut   Down "):
            intent = IntentResult(
                intent="power_control",
                confidence=0.9,
                entities={"action": wording},
                source="remote",
            )
            decision = self.planner.plan(intent)
            self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE, wording)
            self.assertEqual(decision.risk_level, RiskLevel.CRITICAL, wording)
            self.assertEqual(decision.tool_parameters["action"], "shutdown", wording)

    def test_free_form_delete_wording_is_high(self):
        decision = self.planner.plan(_intent("file_operation", target="a.txt", action="Remove"))
        self.assertEqual(decision.action, PlannerAction.CONFIRM_DESTRUCTIVE)
        self.assertEqual(decision.risk_level, RiskLevel.HIGH)

    def test_risk_table(self):
        expected = {
            "close_app": RiskLevel.MEDIUM,
            "install_software": RiskLevel.MEDIUM,
            "web_search": RiskLevel.NONE,
            "play_music": RiskLevel.NONE,
            "volume_control": RiskLevel.NONE,
            "screenshot": RiskLevel.LOW,
            "open_app": RiskLevel.LOW,
            "security_scan": RiskLevel.LOW,
        }
        for name, risk in expected.items():
            decision = self.planner.plan(_intent(name, query="x", app="x"))
            self.assertEqual(decision.risk_level, risk, name)

    def test_execute_with_high_risk_is_rejected(self):
        with self.assertRaises(ValidationError):
            PlannerDecision(action=PlannerAction.EXECUTE_TOOL, risk_level=RiskLevel.HIGH)
        with self.assertRaises(ValidationError):
            PlannerDecision(action=PlannerAction.EXECUTE_TOOL, requires_confirmation=True)


# -- Missing capabilities ----------------------------------------------------

class TestOfferToBuild(_PlannerTestCase):
    def test_reminder_always_offers_to_build(self):
        for confidence in (0.2, 0.9):
            decision = self.planner.plan(_intent("reminder", confidence))
            self.assertEqual(decision.action, PlannerAction.OFFER_TO_BUILD, confidence)
            self.assertTrue(decision.guidance_steps)
            self.assertTrue(decision.fallback_path)
            self.assertIn("task scheduler", decision.reasoning)

    def test_unregistered_intent(self):
        decision = self.planner.plan(_intent("teleport", 0.9))
        self.assertEqual(decision.action, PlannerAction.OFFER_TO_BUILD)
        self.assertEqual(decision.fallback_path, "I can guide you through the manual steps")

    def test_unregistered_low_confidence_clarifies_first(self):
        decision = self.planner.plan(_intent("teleport", 0.3))
        self.assertEqual(decision.action, PlannerAction.ASK_CLARIFICATION)

    def test_custom_registry(self):
        registry = CapabilityRegistry([
            CapabilityModule(name="weather", category="Information",
                             description="Weather", implemented=False,
                             build_plan="Wire up a forecast API",
                             supported_intents=("weather",)),
        ])
        planner = Planner(self.store, registry=registry)
        decision = planner.plan(_intent("weather", location="paris"))
        self.assertEqual(decision.action, PlannerAction.OFFER_TO_BUILD)
        self.assertIn("forecast API", decision.reasoning)


# -- Clarification -----------------------------------------------------------

class TestClarification(_PlannerTestCase):
    def test_unknown_without_context(self):
        decision = self.planner.plan(_intent("unknown", 0.0))
        self.assertEqual(decision.action, PlannerAction.ASK_CLARIFICATION)
        self.assertEqual(
            decision.clarification_question,
            "Could you tell me more about what you'd like to do?",
        )

    def test_unknown_mentions_active_feature(self):
        self.store.add_entry(ContextEntry(user_input="play jazz", active_feature="Media"))
        decision = self.planner.plan(_intent("unknown", 0.0))
        self.assertEqual(
            decision.clarification_question,
            "I'm not sure what you mean. Are you asking about Media?",
        )

    def test_low_confidence_asks_intent_question(self):
        decision = self.planner.plan(_intent("play_music", 0.4))
        self.assertEqual(decision.clarification_question, "What would you like me to play?")

        decision = self.planner.plan(_intent("weather", 0.4))
        self.assertEqual(decision.clarification_question, "For which location?")

    def test_low_confidence_with_entity_is_generic(self):
        decision = self.planner.plan(_intent("play_music", 0.4, query="jazz"))
        self.assertEqual(decision.clarification_question, "Could you be more specific?")

    def test_missing_required_parameters(self):
        decision = self.planner.plan(_intent("open_app"))
        self.assertEqual(decision.action, PlannerAction.ASK_CLARIFICATION)
        self.assertEqual(decision.clarification_question, "I need to know: app")

        decision = self.planner.plan(_intent("file_operation"))
        self.assertEqual(decision.clarification_question, "I need to know: target, action")


# -- Execution ---------------------------------------------------------------

class TestExecute(_PlannerTestCase):
    def test_execute_adds_context_parameters(self):
        self.store.add_entry(ContextEntry(
            user_input="open chrome",
            referenced_folders=["Downloads"],
            referenced_apps=["chrome"],
        ))
        decision = self.planner.plan(_intent("web_search", query="cats"))
        self.assertEqual(decision.action, PlannerAction.EXECUTE_TOOL)
        self.assertEqual(decision.tool, "WebSearchTool")
        self.assertEqual(
            decision.tool_parameters,
            {"query": "cats", "contextFolder": "Downloads", "contextApp": "chrome"},
        )

    def test_explicit_entities_suppress_context(self):
        self.store.add_entry(ContextEntry(
            user_input="x", referenced_folders=["Downloads"], referenced_apps=["chrome"],
        ))
        decision = self.planner.plan(_intent("open_app", app="spotify"))
        self.assertEqual(decision.tool, "SystemTool.OpenApp")
        self.assertEqual(
            decision.tool_parameters, {"app": "spotify", "contextFolder": "Downloads"}
        )

    def test_open_folder(self):
        decision = self.planner.plan(_intent("open_folder", 0.85, target="downloads", action="open"))
        self.assertEqual(decision.action, PlannerAction.EXECUTE_TOOL)
        self.assertEqual(decision.tool, "FileSystemTool.OpenFolder")

    def test_greeting_goes_to_chat(self):
        decision = self.planner.plan(_intent("greeting"))
        self.assertEqual(decision.action, PlannerAction.EXECUTE_TOOL)
        self.assertEqual(decision.tool, "AIChat")


if __name__ == "__main__":
    unittest.main()
