"""
Tests for the IntentClassifier.

Local scoring, normalization and entity extraction run without any network;
the remote stage is replaced with small fakes returning canned outcomes.
"""

import asyncio
import os
import shutil
import tempfile
import unittest

from understanding.context_store import ContextStore
from understanding.intent_classifier import IntentClassifier
from understanding.models import ContextEntry, IntentResult
from understanding.remote_classifier import RemoteClassifier, RemoteOutcome, RemoteOutcomeKind


class _CannedRemote:
    """Remote stand-in returning one fixed outcome."""

    def __init__(self, outcome, timeout=5.0):
        self.outcome = outcome
        self.timeout = timeout
        self.calls = 0

    def classify(self, original, normalized, context_summary):
        self.calls += 1
        return self.outcome

    async def aclassify(self, original, normalized, context_summary):
        self.calls += 1
        return self.outcome


class _SlowRemote:
    """Remote stand-in that never answers on its own."""

    def __init__(self, timeout=60.0):
        self.timeout = timeout
        self.started = False

    def classify(self, original, normalized, context_summary):
        raise AssertionError("sync path not expected")

    async def aclassify(self, original, normalized, context_summary):
        self.started = True
        await asyncio.sleep(30)
        return RemoteOutcome(RemoteOutcomeKind.OK, IntentResult(intent="help", confidence=0.9))


class _BrokenStore(ContextStore):
    def resolve_reference(self, text):
        raise RuntimeError("store unavailable")


AMBIGUOUS = "what's the weather in paris"   # local: weather at 0.6


class _ClassifierTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.store = ContextStore(persist_path=os.path.join(self.tmp, "ctx.json"))
        self.classifier = IntentClassifier(
            self.store, remote=RemoteClassifier(credential_provider=lambda: None)
        )

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)


# -- Normalization -----------------------------------------------------------

class TestNormalize(_ClassifierTestCase):
    def test_typos(self):
        self.assertEqual(self.classifier.normalize("oepn dwonloads"), "open downloads")
        self.assertEqual(self.classifier.normalize("Paly  SPOTFY"), "play spotify")

    def test_slang(self):
        self.assertEqual(self.classifier.normalize("put on some jazz"), "play some jazz")
        self.assertEqual(self.classifier.normalize("turn it up"), "volume up")
        self.assertEqual(self.classifier.normalize("fire up chrome"), "open chrome")

    def test_slang_respects_word_boundaries(self):
        self.assertEqual(self.classifier.normalize("skipping rope"), "skipping rope")


# -- Local classification ----------------------------------------------------

class TestLocalClassification(_ClassifierTestCase):
    def test_open_downloads_with_typos(self):
        result = self.classifier.classify("oepn dwonloads")
        self.assertEqual(result.intent, "open_folder")
        self.assertGreaterEqual(result.confidence, 0.6)
        self.assertEqual(result.entities["target"], "downloads")
        self.assertEqual(result.source, "local")
        self.assertEqual(result.planned_action, "execute")

    def test_confidence_bounded(self):
        inputs = [
            "", "   ", "hello", "play play play music song spotify youtube music",
            "shutdown restart reboot sleep lock hibernate", "qwerty zxcv", AMBIGUOUS,
            "organize sort clean up tidy arrange my downloads",
        ]
        for text in inputs:
            result = self.classifier.classify(text)
            self.assertGreaterEqual(result.confidence, 0.0, text)
            self.assertLessEqual(result.confidence, 0.95, text)

    def test_unknown(self):
        result = self.classifier.classify("qwerty zxcv")
        self.assertEqual(result.intent, "unknown")
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.planned_action, "clarify")

    def test_play_on_platform(self):
        result = self.classifier.classify("play despacito on spotify")
        self.assertEqual(result.intent, "play_music")
        self.assertEqual(result.entities, {"query": "despacito", "platform": "spotify"})
        self.assertEqual(result.inferred_goal, "Play despacito")

    def test_shutdown_needs_confirmation(self):
        result = self.classifier.classify("shutdown the computer")
        self.assertEqual(result.intent, "power_control")
        self.assertEqual(result.entities["action"], "shutdown")
        self.assertTrue(result.needs_confirmation)
        self.assertEqual(result.planned_action, "confirm")

    def test_unmute_is_not_mute(self):
        result = self.classifier.classify("unmute")
        self.assertEqual(result.intent, "volume_control")
        self.assertEqual(result.entities["action"], "unmute")

    def test_delete_path_target(self):
        result = self.classifier.classify("delete ~/notes.txt")
        self.assertEqual(result.intent, "file_operation")
        self.assertEqual(result.entities, {"target": "~/notes.txt", "action": "delete"})
        self.assertTrue(result.needs_confirmation)

    def test_weather_location(self):
        result = self.classifier.classify(AMBIGUOUS)
        self.assertEqual(result.intent, "weather")
        self.assertEqual(result.entities["location"], "paris")
        self.assertLess(result.confidence, 0.8)

    def test_typed_entities(self):
        result = self.classifier.classify("play despacito on spotify")
        slots = result.typed_entities()
        self.assertEqual(slots.kind, "media")
        self.assertEqual(slots.query, "despacito")

    def test_reference_resolved_before_scoring(self):
        self.store.add_entry(ContextEntry(user_input="show pictures", referenced_folders=["pictures"]))
        result = self.classifier.classify("organize that folder")
        self.assertEqual(result.intent, "organize_files")
        self.assertEqual(result.entities["target"], "pictures")

    def test_never_raises(self):
        classifier = IntentClassifier(
            _BrokenStore(persist_path=os.path.join(self.tmp, "broken.json")),
            remote=RemoteClassifier(credential_provider=lambda: None),
        )
        result = classifier.classify("open chrome")
        self.assertEqual(result.intent, "unknown")
        self.assertEqual(result.planned_action, "clarify")


# -- Remote fallback ---------------------------------------------------------

class TestRemoteFallback(_ClassifierTestCase):
    def _with_remote(self, outcome):
        remote = _CannedRemote(outcome)
        return IntentClassifier(self.store, remote=remote), remote

    def test_fast_path_skips_remote(self):
        classifier, remote = self._with_remote(RemoteOutcome(RemoteOutcomeKind.NETWORK_FAILURE))
        classifier.classify("oepn dwonloads")
        self.assertEqual(remote.calls, 0)

    def test_no_credential_keeps_local(self):
        result = self.classifier.classify(AMBIGUOUS)
        self.assertEqual(result.source, "local")
        self.assertEqual(result.remote_outcome, "no_credential")

    def test_more_confident_remote_wins(self):
        remote_result = IntentResult(
            intent="reminder", confidence=0.9, entities={"query": "meeting"}, source="remote"
        )
        classifier, remote = self._with_remote(RemoteOutcome(RemoteOutcomeKind.OK, remote_result))
        result = classifier.classify("ping me tomorrow about the meeting")
        self.assertEqual(remote.calls, 1)
        self.assertEqual(result.intent, "reminder")
        self.assertEqual(result.source, "remote")

    def test_less_confident_remote_ignored(self):
        remote_result = IntentResult(intent="help", confidence=0.3, source="remote")
        classifier, _ = self._with_remote(RemoteOutcome(RemoteOutcomeKind.OK, remote_result))
        result = classifier.classify(AMBIGUOUS)
        self.assertEqual(result.intent, "weather")
        self.assertEqual(result.source, "local")

    def test_equal_confidence_keeps_local(self):
        remote_result = IntentResult(intent="help", confidence=0.6, source="remote")
        classifier, _ = self._with_remote(RemoteOutcome(RemoteOutcomeKind.OK, remote_result))
        self.assertEqual(classifier.classify(AMBIGUOUS).intent, "weather")

    def test_failures_degrade_to_local(self):
        for kind in (
            RemoteOutcomeKind.NETWORK_FAILURE,
            RemoteOutcomeKind.TIMEOUT,
            RemoteOutcomeKind.PARSE_FAILURE,
            RemoteOutcomeKind.CIRCUIT_OPEN,
        ):
            classifier, _ = self._with_remote(RemoteOutcome(kind))
            result = classifier.classify(AMBIGUOUS)
            self.assertEqual(result.intent, "weather", kind)
            self.assertEqual(result.remote_outcome, kind.value)

    def test_async_uses_remote(self):
        remote_result = IntentResult(intent="reminder", confidence=0.9, source="remote")
        classifier, _ = self._with_remote(RemoteOutcome(RemoteOutcomeKind.OK, remote_result))
        result = asyncio.run(classifier.aclassify("ping me tomorrow about the meeting"))
        self.assertEqual(result.intent, "reminder")


# -- Cancellation ------------------------------------------------------------

class TestCancellation(_ClassifierTestCase):
    def test_cancel_pending_returns_local_result(self):
        remote = _SlowRemote()
        classifier = IntentClassifier(self.store, remote=remote)

        async def scenario():
            task = asyncio.ensure_future(classifier.aclassify(AMBIGUOUS))
            while not remote.started:
                await asyncio.sleep(0)
            self.assertTrue(classifier.cancel_pending())
            return await task

        result = asyncio.run(scenario())
        self.assertEqual(result.intent, "weather")
        self.assertEqual(result.remote_outcome, "cancelled")

    def test_slow_remote_times_out(self):
        classifier = IntentClassifier(self.store, remote=_SlowRemote(timeout=0.05))
        result = asyncio.run(classifier.aclassify(AMBIGUOUS))
        self.assertEqual(result.intent, "weather")
        self.assertEqual(result.remote_outcome, "timeout")

    def test_nothing_to_cancel(self):
        self.assertFalse(self.classifier.cancel_pending())


if __name__ == "__main__":
    unittest.main()
