import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from planforge.agent import build_agent
from planforge.config import AgentSettings, load_settings
from planforge.errors import PlanForgeError


def _load(args: argparse.Namespace) -> AgentSettings:
    settings = load_settings(Path(args.config) if args.config else None)
    if args.workspace:
        settings = settings.model_copy(update={"workspace_root": args.workspace})
    return settings


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _plan(settings: AgentSettings, task: str) -> int:
    agent = build_agent(settings)
    try:
        plan = await agent.generate_plan(task)
    except PlanForgeError as exc:
        print(f"Planning failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await agent.aclose()
    _print_json(plan.to_dict())
    return 0


async def _run(settings: AgentSettings, task: str) -> int:
    agent = build_agent(settings)
    try:
        result = await agent.execute(task)
    finally:
        await agent.aclose()
    _print_json(result.to_dict())
    return 0 if result.success else 1


def run_plan(args: argparse.Namespace) -> int:
    return asyncio.run(_plan(_load(args), args.task))


def run_task(args: argparse.Namespace) -> int:
    return asyncio.run(_run(_load(args), args.task))


def run_settings(args: argparse.Namespace) -> int:
    _print_json(_load(args).to_safe_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PlanForge CLI")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--workspace", default=None, help="Workspace root for file tools")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    subparsers = parser.add_subparsers(dest="command")

    plan = subparsers.add_parser("plan", help="Compile a task into a validated plan")
    plan.add_argument("task", help="Task description")

    run = subparsers.add_parser("run", help="Plan and execute a task")
    run.add_argument("task", help="Task description")

    subparsers.add_parser("settings", help="Show effective settings (secrets masked)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    level = args.log_level or _load(args).log_level
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "plan":
        return run_plan(args)
    if args.command == "run":
        return run_task(args)
    if args.command == "settings":
        return run_settings(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
