"""
CLI entry point.

Commands:
- init: Initialize data directory
- shell: Interactive memory shell (write turns, query context)
- health: Check collaborator connectivity

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import logging
import sys

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import MnemoError
from mnemo.core.logging import get_logger, setup_logging
from mnemo.core.orchestrator import MemoryOrchestrator, build_orchestrator
from mnemo.core.types import Role, Turn

SHELL_HELP = """Commands:
  <text>            store a user turn
  /assistant <text> store an assistant turn
  /ask <query>      show the context a query would get
  /patterns         list learned patterns
  /maintain         prune facts and consolidate patterns
  /forget <turn id> remove a turn
  /exit             quit"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else settings.log_level
    log_file = settings.data_dir / "mnemo.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if len(sys.argv) < 2:
        print("Usage: mnemo [--debug] <command> [user_id] [conversation_id]")
        print("Commands: init, shell, health")
        print("Flags: --debug (enable debug logging to data/mnemo.log)")
        return 1

    command = sys.argv[1]

    if command == "init":
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized data directory: {settings.data_dir}")
        print(f"Created: {settings.data_dir}")
        return 0

    if command == "shell":
        user_id = sys.argv[2] if len(sys.argv) > 2 else "local"
        conversation_id = sys.argv[3] if len(sys.argv) > 3 else "default"
        logger.info(f"Starting memory shell for {user_id}/{conversation_id}")
        return asyncio.run(_shell(settings, user_id, conversation_id))

    if command == "health":
        return asyncio.run(_health_check(settings))

    print(f"Unknown command: {command}")
    return 1


async def _handle(memory: MemoryOrchestrator, user_id: str, conversation_id: str, line: str) -> None:
    if line == "/patterns":
        patterns = await memory.list_patterns(user_id)
        if not patterns:
            print("No patterns learned yet.\n")
        for p in patterns:
            print(f"  {p.name} (uses: {p.usage_count}, threshold: {p.confidence_threshold:.2f})")
        print()
        return

    if line == "/maintain":
        report = await memory.maintain(user_id)
        print(f"Pruned {report.facts_pruned} facts, merged {report.patterns_merged} patterns.\n")
        return

    if line.startswith("/forget "):
        removed = await memory.forget(user_id, conversation_id, line[len("/forget "):].strip())
        print("Forgotten.\n" if removed else "No such turn.\n")
        return

    if line.startswith("/ask "):
        context = await memory.read(user_id, conversation_id, line[len("/ask "):].strip())
        print(f"[{context.plan.intent.value} via {context.plan.classified_by}, ~{context.token_estimate} tokens]")
        print(context.render() or "(no context)")
        print()
        return

    role = Role.USER
    if line.startswith("/assistant "):
        role, line = Role.ASSISTANT, line[len("/assistant "):]

    turn = await memory.write(user_id, conversation_id, Turn.create(user_id, conversation_id, line, role))
    print(f"Stored {turn.id} (importance: {turn.importance:.2f})\n")


async def _shell(settings: Settings, user_id: str, conversation_id: str) -> int:
    """Interactive shell over one conversation."""
    print("Mnemo memory shell")
    print(SHELL_HELP)
    print("-" * 40)

    try:
        memory = await build_orchestrator(settings)
    except MnemoError as e:
        print(f"Error: {e}")
        return 1

    await memory.start()
    print("Ready.\n")

    try:
        while True:
            try:
                line = input("> ").strip()
            except EOFError:
                break

            if not line:
                continue
            if line.lower() in ("/exit", "exit", "quit", "q"):
                break
            if line == "/help":
                print(SHELL_HELP + "\n")
                continue

            try:
                await _handle(memory, user_id, conversation_id, line)
            except MnemoError as e:
                print(f"Error: {e}\n")

    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        await memory.stop()

    print("Goodbye!")
    return 0


async def _health_check(settings: Settings) -> int:
    """Check collaborator health."""
    if not settings.completion_model:
        print("No completion model configured; running with offline heuristics.")
        return 0

    from mnemo.llm.litellm_adapter import create_service

    print("Checking collaborators...")
    try:
        service = create_service(settings.completion_model, settings.embedding_model or None)
    except MnemoError as e:
        print(f"  {settings.completion_model}: {e}")
        return 1

    for model in service.registry.available():
        print(f"  configured: {model.model_id} ({model.kind})")

    healthy = await service.health_check()
    print(f"  {settings.completion_model}: {'OK' if healthy else 'UNAVAILABLE'}")
    return 0 if healthy else 1


if __name__ == "__main__":
    sys.exit(main())
