#!/usr/bin/env python3
"""ralph CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from ralph import __version__
from ralph.agents.registry import agent_names
from ralph.commands import build as cmd_build_module
from ralph.commands import plan as cmd_plan_module
from ralph.commands import status as cmd_status_module
from ralph.lib.config import load_config


def get_config(args):
    """Resolve config for --workdir, applying --agent/--no-commit."""
    return load_config(
        Path(args.workdir),
        agent=getattr(args, 'agent', None),
        no_commit=getattr(args, 'no_commit', None),
    )


def cmd_plan(args, config):
    return cmd_plan_module.cmd_plan(args, config)


def cmd_build(args, config):
    return cmd_build_module.cmd_build(args, config)


def cmd_status(args, config):
    return cmd_status_module.cmd_status(args, config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ralph', description='Autonomous agent task loop')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--workdir', '-C', default='.', help='Project directory (default: cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    agent_help = f"Agent backend ({', '.join(agent_names())})"

    # ralph plan
    p_plan = subparsers.add_parser('plan', help='Regenerate the implementation plan from the PRD')
    p_plan.add_argument('iterations', nargs='?', type=int, default=1, help='Planning passes')
    p_plan.add_argument('--agent', help=agent_help)
    p_plan.set_defaults(func=cmd_plan)

    # ralph build
    p_build = subparsers.add_parser('build', help='Run up to N loop iterations')
    p_build.add_argument('iterations', type=int, help='Iteration budget')
    p_build.add_argument('--agent', help=agent_help)
    p_build.add_argument('--no-commit', action='store_true', help='Do not commit successful iterations')
    p_build.set_defaults(func=cmd_build)

    # ralph status
    p_status = subparsers.add_parser('status', help='Show backlog and plan progress')
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = get_config(args)
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}")
        return 2

    try:
        return args.func(args, config)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
