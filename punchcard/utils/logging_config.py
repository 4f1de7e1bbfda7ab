"""
Logging setup.

Everything logs through the stdlib ``logging`` module with one console
handler on the root logger. Loyalty ledger modules log under the
``punchcard`` namespace; the audit trail mirrors every audit row to the
``punchcard.audit`` logger so it can be routed separately.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure the root logger once per process."""
    global _configured
    if _configured:
        return

    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)

    # APScheduler is chatty at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger in the punchcard namespace."""
    if not name.startswith('punchcard'):
        name = f'punchcard.{name}'
    return logging.getLogger(name)
