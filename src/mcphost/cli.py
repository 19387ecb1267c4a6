"""
Command-line front end.

    mcphost tools              list registered tools
    mcphost ask "question"     run one turn and print the answer
    mcphost chat               interactive conversation

Chat commands: /reset, /context, /summarize, /quit.
"""

import argparse
import asyncio
import json
import logging
import sys

from mcphost.llm import LLMError
from mcphost.runtime import Runtime
from mcphost.session import Session
from mcphost.tools import ToolRegistry


def format_tools(registry: ToolRegistry) -> str:
    """One line per registered tool, disabled ones marked."""
    definitions = registry.all_definitions()
    if not definitions:
        return "No tools registered."

    lines = [f"{len(definitions)} tool(s):"]
    for definition in definitions:
        marker = " " if definition.enabled else "x"
        tags = ",".join(sorted(definition.tags))
        lines.append(f"[{marker}] {definition.name:26} {tags:20} {definition.description}")
    return "\n".join(lines)


async def _ask(runtime: Runtime, prompt: str, model: str | None) -> int:
    session = runtime.engine.open_session(model)
    try:
        turn = await runtime.engine.generate_turn(session, prompt)
    except LLMError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for call in turn.tool_calls:
        status = "ok" if call.result.success else "error"
        print(f"[tool] {call.envelope.tool} -> {status}", file=sys.stderr)
    print(turn.text)
    return 0


async def _handle_command(session: Session, line: str) -> bool:
    """Run a /command. Returns False when the chat should end."""
    command = line.strip().lower()
    if command in ("/quit", "/exit"):
        return False
    if command == "/reset":
        session.context.clear()
        print("Context cleared.")
    elif command == "/context":
        print(json.dumps(session.context.get_debug_info(), indent=2))
        print(session.context.get_full_context() or "(empty)")
    elif command == "/summarize":
        done = await session.context.summarize(session.model)
        print("Summarized." if done else "Nothing summarized.")
    else:
        print(f"Unknown command: {line.strip()}")
    return True


async def _chat(runtime: Runtime, model: str | None) -> int:
    session = runtime.engine.open_session(model)
    print(f"Chatting with {session.model}. /quit to exit.")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if not line.strip():
            continue
        if line.startswith("/"):
            if not await _handle_command(session, line):
                break
            continue
        try:
            response = await runtime.engine.generate(session, line)
        except LLMError as e:
            print(f"Error: {e}")
            continue
        print(response.text)
    runtime.engine.close_session(session)
    return 0


async def _run(args: argparse.Namespace) -> int:
    runtime = Runtime.create()
    try:
        if not args.no_external:
            await runtime.discover_external_tools()
        if args.command == "tools":
            print(format_tools(runtime.registry))
            return 0
        if args.command == "ask":
            return await _ask(runtime, args.prompt, args.model)
        return await _chat(runtime, args.model)
    finally:
        await runtime.aclose()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Tool-calling host for text-completion models")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--no-external", action="store_true",
                        help="Skip MCP server discovery")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.add_parser("tools", help="List registered tools")
    ask_parser = subparsers.add_parser("ask", help="Run a single turn")
    ask_parser.add_argument("prompt", help="Question for the model")
    ask_parser.add_argument("--model", help="Model name")
    chat_parser = subparsers.add_parser("chat", help="Interactive conversation")
    chat_parser.add_argument("--model", help="Model name")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    if not hasattr(args, "model"):
        args.model = None

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
