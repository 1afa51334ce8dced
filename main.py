"""
RunRelay CLI entry point.

Usage:
  1. Copy .env.example to .env and fill in OPENAI_API_KEY and assistant ids.
  2. pip install -e .
  3. python main.py                     # pick a recent thread or start a new one
     python main.py --new               # always start a new thread
     python main.py --thread thread_abc # continue a specific thread

Type your message and press Enter. The assistant runs on the hosted service;
file tools and agent calls it requests are executed locally. Type "exit" or
"quit" to leave. Ctrl-C cancels the active run before exiting.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

# Load .env from the working directory
from dotenv import load_dotenv

load_dotenv(Path.cwd() / ".env")

from runrelay.agents import default_agent_registry  # noqa: E402
from runrelay.cancellation import CancellationHandler  # noqa: E402
from runrelay.config import RelayConfig  # noqa: E402
from runrelay.run_session import RunSession  # noqa: E402
from runrelay.service import OpenAIRunService  # noqa: E402
from runrelay.thread_registry import ThreadRegistry  # noqa: E402
from runrelay.tools import default_tool_registry  # noqa: E402

FIRST_PROMPT = "What would you like to do in your current folder?"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RunRelay assistant run driver")
    parser.add_argument("--assistant", dest="assistant_id", default=None, help="Assistant id to talk to")
    parser.add_argument("--thread", dest="thread_id", default=None, help="Existing thread id to continue")
    parser.add_argument("--new", action="store_true", help="Start a new thread without asking")
    parser.add_argument("--workspace", default=None, help="Directory the file tools operate in")
    parser.add_argument("--threads-file", default=None, help="Thread log file")
    parser.add_argument("--no-progress", action="store_true", help="Do not render the progress spinner")
    parser.add_argument("--verbose", action="store_true", help="Print lifecycle events and debug logs")
    parser.add_argument(
        "--print-tool-schemas",
        action="store_true",
        help="Print the function schemas to configure on the assistants and exit.",
    )
    return parser.parse_args()


def choose_thread(registry: ThreadRegistry, limit: int) -> str | None:
    recent = registry.list_recent(limit)
    if not recent:
        return None
    print("Recent threads:")
    print("  0. Start a new thread")
    for index, record in enumerate(recent, start=1):
        print(f"  {index}. {record.thread_id} ({record.created_at})")
    choice = input("Select a thread [0]: ").strip()
    return registry.resolve(choice, limit)


def _print_event(event: dict[str, Any]) -> None:
    print(f"[event] {json.dumps(event, ensure_ascii=False)}")


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = RelayConfig.from_env()
    if args.threads_file:
        config.threads_file = args.threads_file

    tools = default_tool_registry(args.workspace or os.getcwd())
    agents = default_agent_registry(config.assistant_ids, max_depth=config.max_agent_depth)
    if args.print_tool_schemas:
        print(json.dumps(tools.definitions() + agents.definitions(), ensure_ascii=False, indent=2))
        return

    assistant_id = args.assistant_id or config.entry_assistant_id
    if not assistant_id:
        print(
            "[error] no assistant configured: pass --assistant or set RUNRELAY_ENTRY_ASSISTANT "
            "(or RUNRELAY_ASSISTANT_PROJECT_MANAGER)",
            file=sys.stderr,
        )
        sys.exit(2)

    service = OpenAIRunService(api_key=config.api_key, base_url=config.base_url)
    registry = ThreadRegistry(file_path=config.threads_file)
    session = RunSession(
        service,
        assistant_id=assistant_id,
        tools=tools,
        agents=agents,
        config=config,
        thread_registry=registry,
        progress_stream=None if args.no_progress else sys.stdout,
        on_event=_print_event if args.verbose else None,
    )
    interrupt = CancellationHandler(service, lambda: session.context, grace_seconds=config.cancel_grace_seconds)
    interrupt.install()

    print("RunRelay - hosted assistant run driver")
    print(f"assistant: {assistant_id}")
    print(f"workspace: {tools.workspace_dir}")
    print(f"agents: {', '.join(agents.names()) or '(none configured)'}")
    print("-" * 60)

    thread_id = args.thread_id
    if thread_id is None and not args.new:
        thread_id = choose_thread(registry, config.recent_threads)
    try:
        if thread_id:
            session.resume(thread_id)
            print(f"Resuming thread {thread_id}")
        else:
            ctx = session.new_thread()
            print(f"Created thread {ctx.thread_id}")
    except Exception as exc:
        print(f"[error] {exc}", file=sys.stderr)
        sys.exit(1)

    prompt_label = f"{FIRST_PROMPT}\n\n> "
    while True:
        try:
            user_input = input(prompt_label).strip()
        except EOFError:
            print("\nBye!")
            break
        prompt_label = "\n> "

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit"):
            print("Bye!")
            break

        try:
            reply = session.submit(user_input)
        except Exception as exc:
            print(f"[error] {exc}", file=sys.stderr)
            continue
        print(f"\n{reply}")

    interrupt.uninstall()


if __name__ == "__main__":
    main()
