#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Centralized debug logging system for relay.

Debug logging is enabled with the --debug flag. Events are written to a
timestamped file under .relay/logs/ in a format that is easy to review after
a session: one structured record per orchestration event.
"""

import json
import logging
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

from relay import config


def prune_old_logs(log_dir: Path, keep: int) -> None:
    """Remove old log files beyond the configured retention limit."""

    if keep < 1 or not log_dir.exists():
        return

    log_files = sorted(
        [path for path in log_dir.glob("*.log") if path.is_file()],
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )

    for stale_file in log_files[keep:]:
        try:
            stale_file.unlink()
        except OSError:
            continue


class DebugLogger:
    """Centralized debug logger with component-specific logging."""

    _instance: Optional['DebugLogger'] = None

    def __init__(self, enabled: bool = False, log_dir: Optional[Path] = None):
        """Initialize the debug logger.

        Args:
            enabled: Whether debug logging is enabled
            log_dir: Directory to store log files (defaults to .relay/logs/)
        """
        self._enabled = enabled
        self._log_file: Optional[Path] = None
        self._loggers: Dict[str, logging.Logger] = {}

        if enabled:
            if log_dir is None:
                log_dir = config.LOGS_DIR
            log_dir.mkdir(exist_ok=True, parents=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self._log_file = log_dir / f"relay_debug_{timestamp}.log"

            self._setup_logging()

            prune_old_logs(log_dir, config.LOG_RETENTION_LIMIT)

            self.log("system", "DEBUG_SESSION_START", {
                "timestamp": datetime.now().isoformat(),
                "log_file": str(self._log_file),
                "cwd": str(Path.cwd())
            })

    @classmethod
    def initialize(cls, enabled: bool = False, log_dir: Optional[Path] = None) -> 'DebugLogger':
        """Initialize the global debug logger instance."""
        if cls._instance is None:
            cls._instance = cls(enabled, log_dir)
        return cls._instance

    @classmethod
    def get_instance(cls) -> 'DebugLogger':
        """Get the global debug logger instance."""
        if cls._instance is None:
            cls._instance = cls(enabled=False)
        return cls._instance

    def _setup_logging(self):
        formatter = logging.Formatter(
            '%(asctime)s | %(name)-22s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = logging.FileHandler(self._log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)

        root_logger = logging.getLogger('relay')
        root_logger.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
        root_logger.propagate = False

    def get_logger(self, component: str) -> logging.Logger:
        """Get or create a logger for a specific component.

        Args:
            component: Component name (e.g., 'orchestrator', 'llm', 'tools')
        """
        if component not in self._loggers:
            self._loggers[component] = logging.getLogger(f'relay.{component}')
        return self._loggers[component]

    def log(self, component: str, event: str, data: Optional[Dict[str, Any]] = None, level: str = "INFO"):
        """Log a structured event.

        Args:
            component: Component name (e.g., 'orchestrator', 'llm', 'tools')
            event: Event type/name
            data: Optional dictionary of event data
            level: Log level (DEBUG, INFO, WARNING, ERROR)
        """
        if not self._enabled:
            return

        logger = self.get_logger(component)

        message = f"[{event}]"
        if data:
            message += f" {json.dumps(data, indent=2, default=str)}"

        log_level = getattr(logging, level.upper(), logging.INFO)
        logger.log(log_level, message)

    def log_llm_request(self, model: str, system_prompt: str, message: str, context: str, streaming: bool):
        """Log an LLM API request."""
        if not self._enabled:
            return

        self.log("llm", "LLM_REQUEST", {
            "model": model,
            "streaming": streaming,
            "system_prompt_chars": len(system_prompt),
            "message_preview": message[-500:],
            "context_chars": len(context),
        }, "DEBUG")

    def log_llm_response(self, model: str, content: str, usage: Optional[Dict[str, int]] = None):
        """Log an LLM API response."""
        if not self._enabled:
            return

        self.log("llm", "LLM_RESPONSE", {
            "model": model,
            "content_preview": content[:500],
            "usage": usage,
        }, "DEBUG")

    def log_tool_execution(self, tool_name: str, arguments: dict, result: Any = None, error: Optional[str] = None):
        """Log a tool execution.

        Args:
            tool_name: Name of the tool
            arguments: Tool arguments
            result: Tool execution result
            error: Error message if execution failed
        """
        if not self._enabled:
            return

        data = {
            "tool": tool_name,
            "arguments": {k: str(v)[:200] for k, v in arguments.items()},
        }

        if error:
            data["error"] = str(error)
            level = "ERROR"
        else:
            data["result_preview"] = str(result)[:500] if result is not None else None
            level = "DEBUG"

        self.log("tools", "TOOL_EXECUTION", data, level)

    def log_task_status(self, task_id: str, status: str, details: Optional[Dict[str, Any]] = None):
        """Log a task status change."""
        if not self._enabled:
            return

        data = {
            "task_id": task_id,
            "status": status,
        }
        if details:
            data["details"] = details

        self.log("tasks", "TASK_STATUS_CHANGE", data, "INFO")

    def log_error(self, component: str, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Log an error with context."""
        if not self._enabled:
            return

        data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        if context:
            data["context"] = context

        self.log(component, "ERROR", data, "ERROR")

    def log_transition(self, from_agent: str, to_agent: str, reason: str = ""):
        """Log an agent hand-off in the orchestration state machine."""
        if not self._enabled:
            return

        self.log("orchestrator", "AGENT_TRANSITION", {
            "from": from_agent,
            "to": to_agent,
            "reason": reason,
        }, "INFO")

    def _log_plain(self, level: str, msg: str, *args: Any, **kwargs: Any) -> None:
        """Forward standard logging-style calls when debug logging is enabled."""
        if not self._enabled:
            return

        logger = self.get_logger("general")
        log_level = getattr(logging, level.upper(), logging.INFO)
        logger.log(log_level, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("INFO", msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("WARNING", msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("ERROR", msg, *args, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("DEBUG", msg, *args, **kwargs)

    @property
    def enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self._enabled

    @property
    def log_file_path(self) -> Optional[Path]:
        """Get the path to the current log file."""
        return self._log_file

    def close(self):
        """Close the logger and write session end marker."""
        if self._enabled:
            self.log("system", "DEBUG_SESSION_END", {
                "timestamp": datetime.now().isoformat()
            })

            root_logger = logging.getLogger('relay')
            for handler in root_logger.handlers[:]:
                handler.close()
                root_logger.removeHandler(handler)


def log_function(component: str):
    """Decorator to automatically log function calls.

    Usage:
        @log_function('tools')
        def write_file(path, content):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = DebugLogger.get_instance()
            if logger.enabled:
                logger.log(component, "FUNCTION_CALL", {
                    "function": func.__name__,
                    "args": [str(arg)[:200] for arg in args],
                    "kwargs": {k: str(v)[:200] for k, v in kwargs.items()},
                }, "DEBUG")
            return func(*args, **kwargs)
        return wrapper
    return decorator


def get_logger() -> DebugLogger:
    """Get the global debug logger instance."""
    return DebugLogger.get_instance()


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return get_logger().enabled
