# run.py
# Entry point. Config and wiring only; no logic lives here.
#
# Swap AGENT_MODEL for any OpenRouter-supported model.
# https://openrouter.ai/models

import argparse
import uuid

from agent_loop import display
from agent_loop.config import Settings
from agent_loop.harness import AgentHarness
from agent_loop.models import RunStatus


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-loop",
        description="Drive a goal to completion one step at a time.",
    )
    parser.add_argument("goal", nargs="?", help="What the agent should achieve.")
    parser.add_argument("--session", dest="session_id", help="Session id (a new one is generated by default).")
    parser.add_argument("--tools", help="Comma-separated tool names to enable (default: all).")
    parser.add_argument("--max-steps", type=int, dest="max_total_steps", help="Step limit for the run.")
    parser.add_argument("--model", help="Model identifier for the planner.")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default from LOG_LEVEL).")
    parser.add_argument("--list-tools", action="store_true", help="Print the tool catalogue and exit.")
    args = parser.parse_args(argv)
    if not args.goal and not args.list_tools:
        parser.error("a goal is required unless --list-tools is given")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env(
        max_total_steps=args.max_total_steps,
        model=args.model,
        log_level=args.log_level,
    )
    display.setup_logging(settings.log_level)

    with AgentHarness(settings=settings) as harness:
        if args.list_tools:
            display.tool_catalogue(harness.tool_catalogue())
            return 0

        session_id = args.session_id or f"session-{uuid.uuid4().hex[:8]}"
        enabled = [name.strip() for name in args.tools.split(",") if name.strip()] if args.tools else None

        harness.sessions.start(session_id)
        try:
            result = harness.run(args.goal, session_id, enabled_tools=enabled)
        finally:
            harness.sessions.close(session_id)

    display.run_summary(result)
    return 0 if result.status is RunStatus.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
