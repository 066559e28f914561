#!/usr/bin/env python3
"""NetBird self-hosted deployment tools: CLI entrypoint."""

import argparse

from nbdeploy.commands.deploy import register_deploy_command
from nbdeploy.commands.manage import register_manage_command
from nbdeploy.commands.setup_env import register_setup_env_command
from nbdeploy.commands.teardown import register_teardown_command
from nbdeploy.commands.wait import register_wait_command
from nbdeploy.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Deploy self-hosted NetBird on Hetzner Cloud")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging with logger names")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_deploy_command(subparsers)
    register_wait_command(subparsers)
    register_teardown_command(subparsers)
    register_manage_command(subparsers)
    register_setup_env_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
