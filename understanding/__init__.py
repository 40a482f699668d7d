"""
Understanding Layer.

Turns a user's free-text command into a safely gated action decision:
short-term conversational memory, intent classification (local heuristics
with a remote fallback) and a risk-aware planner.
"""

from understanding.models import (
    CapabilityModule,
    ContextEntry,
    IntentResult,
    PlannerAction,
    PlannerDecision,
    RiskLevel,
)
from understanding.capabilities import CapabilityRegistry
from understanding.context_store import (
    ContextIntegrityError,
    ContextState,
    ContextStore,
    LoadStatus,
)
from understanding.remote_classifier import (
    RemoteClassifier,
    RemoteClassifierError,
    RemoteOutcome,
    RemoteOutcomeKind,
)
from understanding.intent_classifier import IntentClassifier
from understanding.planner import Planner
from understanding.confirmation import ConfirmationGate, ConfirmationReply
from understanding.formatter import ResponseFormatter
from understanding.session import TurnResult, UnderstandingSession
from understanding.observability import CircuitBreaker, setup_logging

__all__ = [
    "CapabilityModule",
    "ContextEntry",
    "IntentResult",
    "PlannerAction",
    "PlannerDecision",
    "RiskLevel",
    "CapabilityRegistry",
    "ContextIntegrityError",
    "ContextState",
    "ContextStore",
    "LoadStatus",
    "RemoteClassifier",
    "RemoteClassifierError",
    "RemoteOutcome",
    "RemoteOutcomeKind",
    "IntentClassifier",
    "Planner",
    "ConfirmationGate",
    "ConfirmationReply",
    "ResponseFormatter",
    "TurnResult",
    "UnderstandingSession",
    "CircuitBreaker",
    "setup_logging",
]
