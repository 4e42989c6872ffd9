"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
PROCEDURES_FILE = Path(os.getenv("PROCEDURES_FILE", str(PROJECT_ROOT / "procedures.yaml")))

# Auth — shared secret presented by the CI system
DEPLOY_SECRET = os.getenv("DEPLOY_SECRET", "")

# Server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "9000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Execution
CONCURRENCY_POLICY = os.getenv("CONCURRENCY_POLICY", "reject").lower()  # reject, queue
CONCURRENCY_POLICIES = {"reject", "queue"}
QUEUE_WAIT_SECONDS = float(os.getenv("QUEUE_WAIT_SECONDS", "300"))
KILL_GRACE_SECONDS = float(os.getenv("KILL_GRACE_SECONDS", "5"))

# Max request body accepted on the trigger endpoint (bytes)
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", "65536"))

# Max captured output per step returned to the caller (characters)
OUTPUT_LIMIT = int(os.getenv("OUTPUT_LIMIT", "5000"))


class ConfigError(Exception):
    """Settings the server cannot start with."""


def validate() -> None:
    """Raise ConfigError if the current settings cannot serve triggers."""
    if not DEPLOY_SECRET:
        raise ConfigError("DEPLOY_SECRET is not set; refusing to start")
    if CONCURRENCY_POLICY not in CONCURRENCY_POLICIES:
        raise ConfigError(
            f"CONCURRENCY_POLICY must be one of {sorted(CONCURRENCY_POLICIES)}, "
            f"got {CONCURRENCY_POLICY!r}"
        )
