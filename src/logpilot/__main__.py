"""Interactive command-line chat over a JSONL log file.

Usage:
    python -m logpilot app.jsonl --tier fast
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
from pathlib import Path
import sys

from logpilot.assistant import Assistant, TurnOutcome
from logpilot.config import LOCAL_RUNTIME_TIER, LOCAL_TIERS, ON_DEVICE_TIER, Config
from logpilot.conversation import ConversationContext
from logpilot.corpus import load_jsonl
from logpilot.errors import LogPilotError
from logpilot.governor import DEFAULT_TIERS
from logpilot.ports import FilterSpec, InMemoryFindingsStore, InMemoryLogSource
from logpilot.providers.local_session import probe_chat_server

logger = logging.getLogger("logpilot.cli")

HELP_TEXT = """Commands:
  /tier NAME   switch model tier ({tiers})
  /save        save the last answer as a finding
  /quit        leave"""


class PrintingFilterSink:
    def apply(self, filters: FilterSpec, reset: bool) -> None:
        parts = []
        if filters.levels:
            parts.append(f"levels={','.join(filters.levels)}")
        if filters.daemons:
            parts.append(f"daemons={','.join(filters.daemons)}")
        if filters.keywords:
            parts.append(f"keywords={','.join(filters.keywords)} ({filters.match_mode})")
        action = "new filter tab" if reset else "refined filters"
        print(f"  [view] {action}: {' '.join(parts) or 'everything'}")


class PrintingNavigationSink:
    def scroll_to(self, log_id: int) -> None:
        print(f"  [view] scrolled to log {log_id}")


def build_parser() -> argparse.ArgumentParser:
    tiers = [t.name for t in DEFAULT_TIERS] + [ON_DEVICE_TIER, LOCAL_RUNTIME_TIER]
    parser = argparse.ArgumentParser(
        prog="logpilot", description="Chat with an assistant about a log file"
    )
    parser.add_argument("logfile", type=Path, help="JSONL file, one log entry per line")
    parser.add_argument("--tier", default="balanced", choices=tiers, help="Model tier")
    parser.add_argument(
        "--mock", action="store_true", help="Use the offline echo provider for hosted tiers"
    )
    parser.add_argument(
        "--max-steps", type=int, default=10, help="Inference steps allowed per turn"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


async def _read(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _await_with_progress(assistant: Assistant, coro) -> TurnOutcome | None:
    """Run *coro* while echoing runtime download progress."""
    task = asyncio.create_task(coro)
    shown = ""
    while not task.done():
        await asyncio.sleep(0.25)
        if assistant.progress and assistant.progress != shown:
            shown = assistant.progress
            print(f"  ... {shown}")
    return task.result()


def _print_new(assistant: Assistant, seen: int) -> int:
    messages = assistant.messages
    for message in messages[seen:]:
        if message.role == "user":
            continue
        tag = "!" if message.is_error else "*" if message.is_warning else ">"
        print(f"{tag} {message.text}\n")
    return len(messages)


async def _resolve_preconditions(assistant: Assistant, seen: int) -> int:
    while assistant.awaiting_credential or assistant.awaiting_consent:
        if assistant.awaiting_credential:
            key = await asyncio.to_thread(getpass.getpass, "Gemini API key (blank to skip): ")
            if not key.strip():
                return seen
            await _await_with_progress(assistant, assistant.set_credential(key))
        else:
            answer = await _read("Download the local model? [y/N] ")
            accepted = answer.strip().lower() in {"y", "yes"}
            await _await_with_progress(assistant, assistant.respond_to_consent(accepted))
        seen = _print_new(assistant, seen)
    return seen


async def _chat(args: argparse.Namespace) -> int:
    entries = load_jsonl(args.logfile)
    source = InMemoryLogSource(entries)
    findings = InMemoryFindingsStore()
    config = Config(tier=args.tier, use_mock=args.mock, max_steps=args.max_steps)
    context = ConversationContext(findings=findings)
    logger.info("Loaded %d log entries from %s", len(entries), args.logfile)

    if config.tier == ON_DEVICE_TIER and not await probe_chat_server(
        config.local_session_url or ""
    ):
        print(f"* No on-device model server answered at {config.local_session_url}\n")

    tiers = ", ".join([t.name for t in config.tiers] + sorted(LOCAL_TIERS))
    async with Assistant(
        source,
        PrintingFilterSink(),
        PrintingNavigationSink(),
        config=config,
        context=context,
    ) as assistant:
        seen = _print_new(assistant, 0)
        print(HELP_TEXT.format(tiers=tiers) + "\n")
        while True:
            try:
                line = (await _read(f"[{assistant.tier}] you: ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line in {"/quit", "/exit"}:
                break
            if line == "/save":
                answers = [
                    m
                    for m in assistant.messages
                    if m.role == "model" and not (m.is_error or m.is_warning)
                ]
                if answers:
                    findings.save(answers[-1].text)
                    print("* Saved.\n")
                continue
            if line.startswith("/tier"):
                try:
                    assistant.select_tier(line.removeprefix("/tier").strip())
                except LogPilotError as e:
                    print(f"! {e}" + (f" ({e.hint})" if e.hint else "") + "\n")
                continue

            outcome = await _await_with_progress(assistant, assistant.submit(line))
            seen = _print_new(assistant, seen)
            if outcome is not None and outcome.status == "exhausted":
                print(f"* Stopped after {outcome.steps} steps without a final answer.\n")
            seen = await _resolve_preconditions(assistant, seen)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_chat(args))
    except LogPilotError as e:
        print(f"error: {e}", file=sys.stderr)
        if e.hint:
            print(f"hint: {e.hint}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
