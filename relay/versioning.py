#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Version helpers for relay."""

from __future__ import annotations

import platform
import subprocess
from pathlib import Path
from typing import Optional

from relay._version import RELAY_GIT_COMMIT, RELAY_VERSION


def get_version() -> str:
    """Return the package version."""
    if RELAY_VERSION:
        return RELAY_VERSION

    try:
        from importlib.metadata import version

        return version("relay-agentic")
    except Exception:
        return "unknown"


def get_git_commit(short: bool = True) -> Optional[str]:
    """Return the git commit hash, preferring the build-time value if present."""
    if RELAY_GIT_COMMIT and RELAY_GIT_COMMIT != "unknown":
        return RELAY_GIT_COMMIT[:7] if short else RELAY_GIT_COMMIT

    repo_root = Path(__file__).resolve().parent.parent
    cmd = ["git", "rev-parse", "--short", "HEAD"] if short else ["git", "rev-parse", "HEAD"]
    try:
        commit = subprocess.check_output(cmd, cwd=repo_root, stderr=subprocess.DEVNULL)
    except (subprocess.CalledProcessError, OSError):
        return None
    return commit.decode().strip() or None


def build_version_output(model: str, mode: str) -> str:
    """Format detailed version information for display."""
    version = get_version()
    commit = get_git_commit(short=True)

    output = ["\nrelay - Multi-Agent Coding Workflow"]
    output.append("=" * 60)
    if commit:
        output.append(f"  Version:          {version} (commit {commit})")
    else:
        output.append(f"  Version:          {version}")
    output.append(f"  Mode:             {mode}")
    output.append(f"  Model:            {model}")
    output.append("\nSystem:")
    output.append(f"  OS:               {platform.system()} {platform.release()}")
    output.append(f"  Python:           {platform.python_version()}")

    return "\n".join(output)
