"""CLI logging setup: plain %(message)s output with secret redaction."""

import logging
import sys

from nbdeploy.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Output reads like print(); ``verbose`` adds the logger name and enables
    debug records.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    # Handler-level so records propagated from child loggers are filtered too
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
