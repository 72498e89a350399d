#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Configuration constants and settings for relay."""

import os
import pathlib
from typing import Tuple

# Configuration
ROOT = pathlib.Path(os.getcwd()).resolve()
RELAY_DIR = ROOT / ".relay"
LOGS_DIR = RELAY_DIR / "logs"

DEFAULT_OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
DEFAULT_OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3-coder:480b-cloud")  # default model

OLLAMA_BASE_URL = DEFAULT_OLLAMA_BASE_URL
OLLAMA_MODEL = DEFAULT_OLLAMA_MODEL

# Lower temperature keeps tag syntax stable across turns
OLLAMA_TEMPERATURE = float(os.getenv("OLLAMA_TEMPERATURE", "0.2"))
OLLAMA_NUM_CTX = int(os.getenv("OLLAMA_NUM_CTX", "32768"))
OLLAMA_REQUEST_TIMEOUT = int(os.getenv("OLLAMA_REQUEST_TIMEOUT", "600"))

# ============================================================================
# Orchestration
# ============================================================================
# Orchestration mode: multi (router driven), solo, analysis (solo, read-only tools)
VALID_MODES = ("multi", "solo", "analysis")
ORCHESTRATION_MODE = os.getenv("RELAY_MODE", "multi").lower()

# Hard safety fuse on router/agent iterations per user message
MAX_LOOP_ITERATIONS = int(os.getenv("RELAY_MAX_LOOP_ITERATIONS", "30"))

# Seconds of stream silence treated as natural completion
STREAM_SILENCE_TIMEOUT = float(os.getenv("RELAY_STREAM_SILENCE_TIMEOUT", "90"))

# Apply tool proposals without waiting for a human decision
AUTO_APPLY = os.getenv("RELAY_AUTO_APPLY", "false").lower() == "true"

# [COMPLETED:n] markers go straight to completed instead of review_pending
AUTO_MARK_TASKS = os.getenv("RELAY_AUTO_MARK_TASKS", "false").lower() == "true"

# ============================================================================
# Loop detection
# ============================================================================
LOOP_WINDOW_SIZE = int(os.getenv("RELAY_LOOP_WINDOW_SIZE", "3000"))
LOOP_REPETITION_THRESHOLD = int(os.getenv("RELAY_LOOP_REPETITION_THRESHOLD", "5"))
LOOP_MIN_TEXT_LENGTH = 100
LOOP_SUFFIX_SIZE = int(os.getenv("RELAY_LOOP_SUFFIX_SIZE", "150"))
LOOP_SAFE_ZONE_SUFFIX_SIZE = int(os.getenv("RELAY_LOOP_SAFE_ZONE_SUFFIX_SIZE", "400"))
# Share of the window dropped from the end on state oscillation
LOOP_TRIM_RATIO = float(os.getenv("RELAY_LOOP_TRIM_RATIO", "0.6"))

LOOP_TRIGGER_PATTERNS: Tuple[str, ...] = (
    r"(?:^|\n)Ready[.,]",
    r"(?:^|\n)Wait[.,]",
    r"(?:^|\n)Applying[.,]",
    r"(?:^|\n)Actually,",
    r"(?:^|\n)\[COMPLETED:",
    r"(?:^|\n)Final check",
)

# ============================================================================
# Usage & history
# ============================================================================
# Streamed characters per estimated output token
CHARS_PER_TOKEN = int(os.getenv("RELAY_CHARS_PER_TOKEN", "4"))
HISTORY_COMPRESS_THRESHOLD = int(os.getenv("RELAY_HISTORY_COMPRESS_THRESHOLD", "6"))
HISTORY_KEEP_RECENT = int(os.getenv("RELAY_HISTORY_KEEP_RECENT", "4"))

# ============================================================================
# Tools
# ============================================================================
MAX_FILE_BYTES = 5 * 1024 * 1024
READ_RETURN_LIMIT = 80_000
SEARCH_MATCH_LIMIT = 200
COMMAND_TIMEOUT_SECONDS = int(os.getenv("RELAY_COMMAND_TIMEOUT", "300"))
BACKGROUND_GRACE_SECONDS = float(os.getenv("RELAY_BACKGROUND_GRACE_SECONDS", "2.0"))
COMMAND_OUTPUT_LIMIT = int(os.getenv("RELAY_COMMAND_OUTPUT_LIMIT", "8000"))
# Run agent commands through the system shell (pipes, &&, redirects).
# When false, commands are split with shlex and shell metacharacters are rejected.
COMMAND_ALLOW_SHELL = os.getenv("RELAY_COMMAND_ALLOW_SHELL", "true").lower() == "true"

EXCLUDE_DIRS = {
    ".git", ".hg", ".svn", ".idea", ".vscode", "__pycache__", ".pytest_cache",
    "node_modules", "dist", "build", ".next", "out", "coverage", ".cache",
    ".venv", "venv", "target", ".relay"
}

# Logging configuration
LOG_RETENTION_LIMIT = int(os.getenv("RELAY_LOG_RETENTION", "7"))


def set_model(model_name: str) -> None:
    """Update the active model for every agent."""
    global OLLAMA_MODEL
    OLLAMA_MODEL = model_name


def set_orchestration_mode(mode: str) -> bool:
    """Set the orchestration mode for the current session.

    Args:
        mode: One of "multi", "solo" or "analysis"

    Returns:
        True if mode was set successfully, False otherwise
    """
    global ORCHESTRATION_MODE
    mode = mode.lower().strip()
    if mode not in VALID_MODES:
        return False

    ORCHESTRATION_MODE = mode
    os.environ["RELAY_MODE"] = mode
    return True


def get_orchestration_mode() -> str:
    """Get the current orchestration mode."""
    return ORCHESTRATION_MODE
