"""
End-to-end tests for the UnderstandingSession: classify -> plan -> confirm,
with local classification only.
"""

import asyncio
import json
import os
import shutil
import tempfile
import unittest

from understanding.confirmation import REASK_PROMPT
from understanding.models import ContextEntry, PlannerAction, RiskLevel
from understanding.remote_classifier import RemoteClassifier
from understanding.session import APOLOGY, UnderstandingSession, active_feature_for


class _SessionTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.audit_path = os.path.join(self.tmp, "audit_log.jsonl")
        self.session = UnderstandingSession.create(
            persist_path=os.path.join(self.tmp, "context_store.json"),
            audit_log_path=self.audit_path,
            remote=RemoteClassifier(credential_provider=lambda: None),
        )

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _audit(self):
        with open(self.audit_path, encoding="utf-8") as f:
            return [json.loads(line) for line in f]


class TestExecuteTurn(_SessionTestCase):
    def test_open_downloads(self):
        turn = self.session.process("oepn dwonloads")
        self.assertTrue(turn.should_execute)
        self.assertEqual(turn.tool, "FileSystemTool.OpenFolder")
        self.assertEqual(turn.tool_parameters, {"target": "downloads", "action": "open"})

        state = self.session.context.state
        self.assertEqual(state.last_referenced_folder, "downloads")
        self.assertEqual(state.last_active_feature, "Files")
        self.assertEqual(state.history[-1].assistant_response, turn.response)

    def test_async_turn(self):
        turn = asyncio.run(self.session.aprocess("oepn dwonloads"))
        self.assertTrue(turn.should_execute)

    def test_path_target_is_a_file(self):
        self.session.process("delete ~/notes.txt")
        self.assertEqual(self.session.context.state.last_referenced_file, "~/notes.txt")

    def test_offer_to_build(self):
        turn = self.session.process("remind me to stretch")
        self.assertEqual(turn.decision.action, PlannerAction.OFFER_TO_BUILD)
        self.assertFalse(turn.should_execute)
        self.assertIn("Want me to add this capability?", turn.response)

    def test_record_outcome(self):
        self.session.process("oepn dwonloads")
        message = self.session.record_outcome(False, "explorer crashed")

        self.assertEqual(message, "That didn't work. explorer crashed")
        self.assertEqual(
            self.session.context.state.last_action_outcome, "Failed: explorer crashed"
        )
        (entry,) = self._audit()
        self.assertEqual(entry["event"], "execution")
        self.assertEqual(entry["tool"], "FileSystemTool.OpenFolder")

    def test_success_message_restates_goal(self):
        self.session.process("oepn dwonloads")
        self.assertEqual(self.session.record_outcome(True), "Done: open the downloads folder.")

    def test_raw_error_is_simplified(self):
        self.session.process("oepn dwonloads")
        message = self.session.record_outcome(False, "[Errno 13] Permission denied: 'x'")
        self.assertEqual(message, "That didn't work. I don't have permission to do that.")

    def test_execute_response_restates_goal(self):
        turn = self.session.process("oepn dwonloads")
        self.assertEqual(
            turn.response,
            "Understood: open the downloads folder. Running FileSystemTool.OpenFolder now.",
        )

    def test_help_lists_capabilities(self):
        turn = self.session.process("what can you do")
        self.assertTrue(turn.response.startswith("Here's what I can do:"))
        self.assertEqual(turn.response, self.session.capabilities_description())


class TestConfirmationFlow(_SessionTestCase):
    def test_yes_executes(self):
        turn = self.session.process("shutdown the computer")
        self.assertTrue(turn.awaiting_confirmation)
        self.assertFalse(turn.should_execute)
        self.assertTrue(self.session.is_awaiting_confirmation)
        self.assertIn("shut down your computer", turn.response)

        reply = self.session.process("yes")
        self.assertTrue(reply.confirmation_received)
        self.assertTrue(reply.user_confirmed)
        self.assertTrue(reply.should_execute)
        self.assertEqual(reply.tool, "SystemTool.Power")
        self.assertFalse(self.session.is_awaiting_confirmation)

        (entry,) = self._audit()
        self.assertIs(entry["user_confirmed"], True)

    def test_no_cancels(self):
        self.session.process("shutdown the computer")
        reply = self.session.process("no")
        self.assertFalse(reply.should_execute)
        self.assertEqual(reply.response, "Okay, cancelled.")
        self.assertFalse(self.session.is_awaiting_confirmation)

    def test_unclear_asks_again(self):
        self.session.process("shutdown the computer")
        reply = self.session.process("hmm")
        self.assertTrue(reply.awaiting_confirmation)
        self.assertEqual(reply.response, REASK_PROMPT)
        self.assertTrue(self.session.is_awaiting_confirmation)

    def test_replies_are_not_recorded_as_turns(self):
        self.session.process("shutdown the computer")
        self.session.process("yes")
        self.assertEqual(len(self.session.context), 1)

    def test_recent_confirmation_skips_prompt(self):
        self.session.process("sleep")
        self.session.process("yes")

        turn = self.session.process("sleep")
        self.assertEqual(turn.decision.risk_level, RiskLevel.LOW)
        self.assertFalse(turn.awaiting_confirmation)
        self.assertTrue(turn.should_execute)

    def test_repeated_delete_asks_again(self):
        self.session.process("delete ~/notes.txt")
        reply = self.session.process("yes")
        self.assertTrue(reply.should_execute)

        turn = self.session.process("delete ~/notes.txt")
        self.assertEqual(turn.decision.risk_level, RiskLevel.HIGH)
        self.assertTrue(turn.awaiting_confirmation)
        self.assertFalse(turn.should_execute)
        self.assertIn("permanently delete '~/notes.txt'", turn.response)

    def test_sensitive_close_is_escalated(self):
        turn = self.session.process("close explorer")
        self.assertEqual(turn.decision.action, PlannerAction.CONFIRM_DESTRUCTIVE)
        self.assertEqual(turn.decision.risk_level, RiskLevel.MEDIUM)
        self.assertTrue(turn.decision.requires_confirmation)
        self.assertTrue(turn.awaiting_confirmation)
        self.assertIn("close 'explorer'", turn.response)

        self.assertTrue(self.session.process("yes").should_execute)
        self.assertTrue(self.session.process("close explorer").awaiting_confirmation)

    def test_ordinary_close_executes(self):
        turn = self.session.process("close notepad")
        self.assertEqual(turn.decision.action, PlannerAction.EXECUTE_TOOL)
        self.assertTrue(turn.should_execute)

    def test_critical_always_asks(self):
        self.session.process("shutdown the computer")
        self.session.process("yes")
        turn = self.session.process("shutdown the computer")
        self.assertTrue(turn.awaiting_confirmation)


class TestFailures(_SessionTestCase):
    def test_fault_is_reported_on_the_turn(self):
        history = self.session.context.state.history
        history.extend(ContextEntry(user_input=f"x{i}") for i in range(21))

        turn = self.session.process("oepn dwonloads")
        self.assertIsNotNone(turn.error)
        self.assertEqual(turn.response, APOLOGY)
        self.assertFalse(turn.should_execute)


class TestActiveFeature(unittest.TestCase):
    def test_families(self):
        self.assertEqual(active_feature_for("play_music"), "Media")
        self.assertEqual(active_feature_for("power_control"), "System")
        self.assertEqual(active_feature_for("open_folder"), "Files")
        self.assertEqual(active_feature_for("weather"), "Information")
        self.assertEqual(active_feature_for("reminder"), "Productivity")
        self.assertEqual(active_feature_for("greeting"), "Chat")


if __name__ == "__main__":
    unittest.main()
