"""Centralized version constant for relay."""

# RELAY_GIT_COMMIT is filled in by setup.py at build time so installed
# packages carry the commit without git metadata.
RELAY_VERSION = "0.3.0"
RELAY_GIT_COMMIT = "unknown"

__all__ = ["RELAY_VERSION", "RELAY_GIT_COMMIT"]
