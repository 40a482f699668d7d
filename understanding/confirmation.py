"""
Confirmation Gate for risky actions.

- Parses the user's yes/no reply
- Words the "Are you sure ...?" prompt for a ConfirmDestructive decision
- Appends every confirmation and execution to a JSON-lines audit log
- Remembers confirmed (tool, parameters) pairs for a short window
- Flags operations that need a yes whatever the planner decided
"""

import json
import logging
import os
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

from understanding import config
from understanding.models import PlannerDecision, RiskLevel

logger = logging.getLogger(__name__)


class ConfirmationReply(Enum):
    CONFIRMED = "confirmed"
    DENIED = "denied"
    UNCLEAR = "unclear"


YES_WORDS = frozenset({"yes", "y", "confirm", "ok", "sure"})
NO_WORDS = frozenset({"no", "n", "cancel", "stop", "nevermind"})

RISK_MARKERS = {
    RiskLevel.CRITICAL: "🚨",
    RiskLevel.HIGH: "⚠️",
    RiskLevel.MEDIUM: "⚡",
}
DEFAULT_MARKER = "ℹ️"

REASK_PROMPT = "Please confirm with 'yes' or 'no'."

# Operations that are confirmed every time, recent approvals notwithstanding
ALWAYS_CONFIRM = frozenset({
    "shutdown",
    "restart",
    "delete_file",
    "delete_folder",
    "format_drive",
    "registry_edit",
    "uninstall_app",
    "empty_recycle_bin",
})

# operation -> target fragments that make it sensitive
CONDITIONAL_CONFIRM = {
    "close_app": ("explorer", "system", "antivirus", "security"),
    "move_file": ("system32", "windows", "program files"),
    "rename_file": (".exe", ".dll", ".sys"),
}


def _target_of(parameters: Dict[str, Any]) -> str:
    return str(parameters.get("target") or parameters.get("app") or "")


def _describe(tool: str, parameters: Dict[str, Any]) -> str:
    action = str(parameters.get("action", "")).lower()
    target = _target_of(parameters)

    if tool == "SystemTool.Power":
        if action == "shutdown":
            return "shut down your computer"
        if action == "restart":
            return "restart your computer"
        return f"{action or 'change the power state of'} your computer".strip()
    if tool.startswith("FileSystemTool"):
        if action == "delete":
            return f"permanently delete '{target}'"
        if action in ("move", "rename"):
            return f"{action} '{target}'"
    if tool == "SystemTool.CloseApp":
        return f"close '{target}'"
    if tool == "SoftwareInstaller":
        return f"install '{target or parameters.get('query', 'this software')}'"
    if target:
        return f"perform {tool} on '{target}'"
    return f"run {tool}"


def _rollback_info(tool: str, parameters: Dict[str, Any]) -> Optional[str]:
    action = str(parameters.get("action", "")).lower()
    if tool.startswith("FileSystemTool"):
        if action == "delete":
            return f"Restore from the trash: {parameters.get('target')}"
        if action == "move":
            return f"Move back from {parameters.get('destination')} to {parameters.get('target')}"
        if action == "rename":
            return f"Rename back to {parameters.get('target')}"
    if tool == "SystemTool.CloseApp":
        return f"Reopen: {parameters.get('app')}"
    return None


def _operation(tool: str, parameters: Dict[str, Any]) -> str:
    """Operation name for a (tool, parameters) pair, e.g. "delete_file" or "close_app"."""
    action = str(parameters.get("action", "")).lower()
    if tool == "SystemTool.Power":
        return action
    if tool == "SystemTool.CloseApp":
        return "close_app"
    if tool.startswith("FileSystemTool") and action:
        return f"{action}_file"
    if tool == "SoftwareInstaller" and action == "uninstall":
        return "uninstall_app"
    return tool.lower()


class ConfirmationGate:
    """Yes/no gate plus audit trail for actions that need explicit approval."""

    def __init__(
        self,
        audit_log_path: Optional[str] = None,
        window_seconds: float = config.CONFIRMATION_WINDOW_SECONDS,
    ):
        self.audit_log_path = audit_log_path or config.AUDIT_LOG_PATH
        self.window_seconds = window_seconds
        self._recent: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def parse_reply(text: str) -> ConfirmationReply:
        reply = (text or "").strip().lower().rstrip(".!")
        if reply in YES_WORDS:
            return ConfirmationReply.CONFIRMED
        if reply in NO_WORDS:
            return ConfirmationReply.DENIED
        return ConfirmationReply.UNCLEAR

    @staticmethod
    def prompt_for(decision: PlannerDecision) -> str:
        marker = RISK_MARKERS.get(decision.risk_level, DEFAULT_MARKER)
        description = _describe(decision.tool or "", decision.tool_parameters)
        return (
            f"{marker} Are you sure you want to {description}?\n\n"
            "Type 'yes' to confirm or 'no' to cancel."
        )

    # ── Sensitive operations ──────────────────────────────────────────────

    @staticmethod
    def requires_confirmation(tool: str, parameters: Dict[str, Any]) -> bool:
        """
        True when the operation must be confirmed whatever the planner
        decided: always-confirm operations, and conditional ones whose
        target, app or destination names something sensitive.
        """
        operation = _operation(tool, parameters)
        if operation in ALWAYS_CONFIRM:
            return True
        fragments = CONDITIONAL_CONFIRM.get(operation)
        if not fragments:
            return False
        named = " ".join(
            str(parameters.get(key, "")) for key in ("target", "app", "destination")
        ).lower()
        return any(fragment in named for fragment in fragments)

    # ── Recent confirmations ─────────────────────────────────────────────

    @staticmethod
    def _key(tool: str, parameters: Dict[str, Any]) -> str:
        return f"{tool}:{json.dumps(parameters, sort_keys=True, default=str)}"

    def recently_confirmed(self, tool: str, parameters: Dict[str, Any]) -> bool:
        """True if this exact (tool, parameters) pair was confirmed within the window."""
        with self._lock:
            confirmed_at = self._recent.get(self._key(tool, parameters))
            return (
                confirmed_at is not None
                and time.monotonic() - confirmed_at < self.window_seconds
            )

    # ── Audit log ────────────────────────────────────────────────────────

    def record_confirmation(self, tool: str, parameters: Dict[str, Any], confirmed: bool):
        if confirmed:
            now = time.monotonic()
            with self._lock:
                self._recent = {
                    key: confirmed_at
                    for key, confirmed_at in self._recent.items()
                    if now - confirmed_at < self.window_seconds
                }
                self._recent[self._key(tool, parameters)] = now
        self._audit(
            "confirmation",
            tool=tool,
            target=_target_of(parameters),
            parameters=parameters,
            user_confirmed=confirmed,
        )
        logger.info("Recorded confirmation: %s = %s", tool, confirmed)

    def record_execution(
        self,
        tool: str,
        parameters: Dict[str, Any],
        success: bool,
        error: Optional[str] = None,
    ):
        self._audit(
            "execution",
            tool=tool,
            target=_target_of(parameters),
            parameters=parameters,
            success=success,
            error=error,
            rollback_info=_rollback_info(tool, parameters),
        )
        logger.info("Recorded execution: %s = %s", tool, "success" if success else "failed")

    def _audit(self, event: str, **data):
        entry: Dict[str, Any] = {"ts": time.time(), "event": event}
        for key, value in data.items():
            if isinstance(value, dict):
                entry[key] = {str(k): str(v) for k, v in value.items()}
            elif isinstance(value, bool) or value is None:
                entry[key] = value
            else:
                entry[key] = str(value)
        try:
            directory = os.path.dirname(os.path.abspath(self.audit_log_path))
            os.makedirs(directory, exist_ok=True)
            with open(self.audit_log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error("Audit log write failed (%s): %s", self.audit_log_path, e)

    def recent_entries(self, count: int = 20) -> list:
        """Last *count* audit entries, newest first. Unreadable lines are skipped."""
        if count <= 0 or not os.path.exists(self.audit_log_path):
            return []
        try:
            with open(self.audit_log_path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            logger.error("Audit log read failed (%s): %s", self.audit_log_path, e)
            return []

        entries = []
        for line in reversed(lines):
            if len(entries) >= count:
                break
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries
