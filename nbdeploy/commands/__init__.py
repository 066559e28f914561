"""Shared CLI plumbing: readiness flags, signal handling, error exits."""

import asyncio
import logging
import signal
import sys

import httpx

from nbdeploy.config import ConfigError
from nbdeploy.provisioning.hetzner import HetznerError
from nbdeploy.readiness import Orchestrator, log_summary

logger = logging.getLogger(__name__)

# Errors a command reports as a one-line message instead of a traceback
CLI_ERRORS = (ConfigError, HetznerError, ValueError, RuntimeError, httpx.HTTPError, OSError)


def add_common_args(parser):
    parser.add_argument("--config", default=None, help="YAML config file (default: ./nbdeploy.yaml if present)")
    parser.add_argument("--dry-run", action="store_true", help="Print API requests and commands without executing")


def add_ssh_args(parser):
    parser.add_argument("--ssh-key", default="~/.ssh/id_ed25519", help="SSH private key path (public key: <path>.pub)")
    parser.add_argument("--ssh-user", default="root", help="SSH user on the server")
    parser.add_argument("--ssh-port", type=int, default=22, help="SSH port")
    parser.add_argument(
        "--known-hosts",
        default=None,
        help="known_hosts file to pin server host keys in (default: host keys are not recorded)",
    )


def add_readiness_args(parser):
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; stages that would ask the operator abort instead",
    )


def is_interactive(args) -> bool:
    return not args.non_interactive and sys.stdin.isatty()


def run_command(coro_fn, args):
    """Run an async command handler; exit non-zero on failure or known errors."""
    try:
        ok = asyncio.run(coro_fn(args))
    except CLI_ERRORS as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    if ok is False:
        sys.exit(1)


def install_cancel_handlers(cancel: asyncio.Event):
    """Set *cancel* on SIGINT/SIGTERM. Returns the signals handled."""
    loop = asyncio.get_running_loop()
    installed = []

    def _on_signal(signame):
        if not cancel.is_set():
            logger.warning(f"\nReceived {signame}, cancelling (pollers stop at their next wait)...")
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return installed


def remove_cancel_handlers(signals):
    loop = asyncio.get_running_loop()
    for sig in signals:
        loop.remove_signal_handler(sig)


async def run_readiness(stages, target, interactive):
    """Run *stages* against *target* with Ctrl-C wired to cancellation.

    Returns:
        OrchestratorResult (the summary is already logged).
    """
    cancel = asyncio.Event()
    handled = install_cancel_handlers(cancel)
    try:
        orchestrator = Orchestrator(interactive=interactive, cancel=cancel)
        result = await orchestrator.run(stages, target)
    finally:
        remove_cancel_handlers(handled)
    log_summary(result)
    return result
