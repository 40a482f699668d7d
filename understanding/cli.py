"""
Interactive console for trying the understanding pipeline by hand.

    understanding                      # default store, remote fallback if a key is set
    understanding --no-remote --json   # local heuristics only, print decisions as JSON

Inside the prompt:
    :ok            report the last tool as executed successfully
    :fail <why>    report the last tool as failed
    :context       print the context summary
    :help          list what the assistant can do
    :clear         forget the conversation
    quit / exit    leave
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from understanding import config
from understanding.observability import setup_logging
from understanding.remote_classifier import RemoteClassifier
from understanding.session import TurnResult, UnderstandingSession

logger = logging.getLogger(__name__)

EXIT_WORDS = ("quit", "exit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="understanding",
        description="Classify and plan free-text commands interactively",
    )
    parser.add_argument("--store", default=config.CONTEXT_STORE_PATH, help="Context snapshot path")
    parser.add_argument("--audit-log", default=config.AUDIT_LOG_PATH, help="Audit log path")
    parser.add_argument(
        "--provider",
        choices=("anthropic", "openai"),
        default=config.CLASSIFIER_PROVIDER,
        help="Remote classifier provider",
    )
    parser.add_argument("--no-remote", action="store_true", help="Local heuristics only")
    parser.add_argument("--json", action="store_true", help="Print each turn as JSON")
    parser.add_argument("--log-dir", default=config.LOG_DIR)
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    return parser


def format_turn(turn: TurnResult, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(
            {
                "intent": turn.intent.model_dump(mode="json") if turn.intent else None,
                "decision": turn.decision.model_dump(mode="json") if turn.decision else None,
                "response": turn.response,
                "awaiting_confirmation": turn.awaiting_confirmation,
                "should_execute": turn.should_execute,
                "error": turn.error,
            },
            indent=2,
            ensure_ascii=False,
        )

    lines = []
    if turn.intent is not None and not turn.confirmation_received:
        lines.append(
            f"[{turn.intent.intent} {turn.intent.confidence:.2f} {turn.intent.source}] "
            f"{turn.decision.action.value if turn.decision else '-'}"
        )
    lines.append(turn.response)
    if turn.should_execute:
        lines.append(f"-> {turn.tool} {json.dumps(turn.tool_parameters, ensure_ascii=False)}")
    return "\n".join(lines)


def _handle_command(session: UnderstandingSession, line: str) -> str:
    command, _, argument = line.partition(" ")
    if command == ":ok":
        return session.record_outcome(True)
    if command == ":fail":
        return session.record_outcome(False, argument.strip() or "unknown error")
    if command == ":help":
        return session.capabilities_description()
    if command == ":context":
        return session.context.get_context_summary()
    if command == ":clear":
        session.context.clear()
        session.clear_pending()
        return "Context cleared."
    return f"Unknown command {command}"


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_dir=args.log_dir, level=args.log_level)

    if args.no_remote:
        remote = RemoteClassifier(credential_provider=lambda: None, provider=args.provider)
    else:
        remote = RemoteClassifier(provider=args.provider)
        if not remote.is_configured():
            print("No API key configured, using local classification only.", file=sys.stderr)

    session = UnderstandingSession.create(
        persist_path=args.store,
        audit_log_path=args.audit_log,
        remote=remote,
    )
    logger.info("Interactive session started (store=%s)", args.store)

    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not line:
            continue
        if line.lower() in EXIT_WORDS:
            break
        if line.startswith(":"):
            print(_handle_command(session, line))
            continue

        print(format_turn(session.process(line), as_json=args.json))

    return 0


if __name__ == "__main__":
    sys.exit(main())
