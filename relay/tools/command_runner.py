"""
Subprocess execution for agent commands.

Foreground commands run to completion (bounded by a timeout and the session's
cancel signal) and report stdout, stderr and the exit code. Background
commands are started, given a short grace period to fail fast, and then
tracked as the single active process whose output is pumped to observers by
a daemon thread.

Process Design:
- Only one background process is tracked; starting another replaces it
- Processes are terminated gracefully, then killed if needed
- Output is truncated to keep tool results within the model context
"""

import os
import re
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from relay import config
from relay.debug_logger import get_logger


# Forbidden patterns when running without a shell
FORBIDDEN_RE = re.compile(r"[;&|><`]|(\$\()|\r|\n")

OutputCallback = Callable[[str, str, Optional[int]], None]

_POLL_INTERVAL = 0.1


@dataclass
class CommandResult:
    cmd: str
    rc: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    interrupted: bool = False
    error: Optional[str] = None
    background: bool = False
    running: bool = False
    pid: Optional[int] = None

    @property
    def ok(self) -> bool:
        if self.error or self.timed_out or self.interrupted:
            return False
        if self.running:
            return True
        return self.rc == 0


def _truncate(text: str, limit: int = config.COMMAND_OUTPUT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n...[truncated {len(text) - limit} chars]..."


def _parse_and_validate(cmd: str) -> Tuple[bool, str, List[str]]:
    """Parse a command for shell-less execution.

    Returns:
        Tuple of (is_valid, error_message, parsed_args)
    """
    if FORBIDDEN_RE.search(cmd):
        return False, "shell metacharacters not allowed (&&, ;, |, >, <, `, $(), etc.)", []

    try:
        args = shlex.split(cmd, posix=(os.name != "nt"))
    except ValueError as e:
        return False, f"failed to parse command: {e}", []

    if not args:
        return False, "empty command", []

    return True, "", args


def _stop(proc: subprocess.Popen) -> None:
    """Terminate gracefully, then kill if the process does not exit."""
    if proc.poll() is not None:
        return
    try:
        proc.terminate()
        try:
            proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
    except OSError:
        pass


class ProcessManager:
    """Runs agent commands and tracks at most one background process."""

    def __init__(
        self,
        cwd: Optional[Path] = None,
        on_output: Optional[OutputCallback] = None,
        allow_shell: bool = config.COMMAND_ALLOW_SHELL,
        timeout: float = config.COMMAND_TIMEOUT_SECONDS,
        grace_seconds: float = config.BACKGROUND_GRACE_SECONDS,
    ):
        self.cwd = Path(cwd or config.ROOT)
        self.on_output = on_output
        self.allow_shell = allow_shell
        self.timeout = timeout
        self.grace_seconds = grace_seconds
        self._lock = threading.Lock()
        self._active: Optional[subprocess.Popen] = None
        self._active_cmd = ""

    def _emit(self, kind: str, data: str = "", pid: Optional[int] = None) -> None:
        if self.on_output is not None:
            self.on_output(kind, data, pid)

    def _popen(self, cmd: str, **kwargs) -> Union[subprocess.Popen, str]:
        """Start cmd; returns the process or an error string."""
        if self.allow_shell:
            args: Union[str, List[str]] = cmd
        else:
            is_valid, error_msg, args = _parse_and_validate(cmd)
            if not is_valid:
                return error_msg
        try:
            return subprocess.Popen(
                args,
                shell=self.allow_shell,
                cwd=str(self.cwd),
                text=True,
                encoding="utf-8",
                errors="replace",
                **kwargs,
            )
        except FileNotFoundError:
            return f"command not found: {cmd.split()[0] if cmd.split() else cmd}"
        except OSError as e:
            return f"OS error: {e}"

    # ---- foreground ----

    def run(self, cmd: str, cancel_event: Optional[threading.Event] = None,
            timeout: Optional[float] = None) -> CommandResult:
        """Run cmd to completion and aggregate its output."""
        timeout = self.timeout if timeout is None else timeout
        cmd = cmd.strip()
        if not cmd:
            return CommandResult(cmd=cmd, error="empty command")

        proc = self._popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL)
        if isinstance(proc, str):
            return CommandResult(cmd=cmd, error=proc)

        self._emit("start", cmd, proc.pid)
        start = time.time()
        stdout_parts: List[str] = []
        stderr_parts: List[str] = []
        timed_out = interrupted = False

        while True:
            try:
                out, err = proc.communicate(timeout=_POLL_INTERVAL)
                stdout_parts.append(out or "")
                stderr_parts.append(err or "")
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    interrupted = True
                elif time.time() - start > timeout:
                    timed_out = True
                else:
                    continue
                _stop(proc)
                out, err = proc.communicate()
                stdout_parts.append(out or "")
                stderr_parts.append(err or "")
                break

        result = CommandResult(
            cmd=cmd,
            rc=proc.returncode,
            stdout=_truncate("".join(stdout_parts)),
            stderr=_truncate("".join(stderr_parts)),
            timed_out=timed_out,
            interrupted=interrupted,
            pid=proc.pid,
        )
        if result.stdout:
            self._emit("output", result.stdout, proc.pid)
        if result.stderr:
            self._emit("output", result.stderr, proc.pid)
        self._emit("stop", str(proc.returncode), proc.pid)
        get_logger().log_tool_execution("execute_command", {"cmd": cmd}, f"rc={proc.returncode}")
        return result

    # ---- background ----

    def start_background(self, cmd: str, grace_seconds: Optional[float] = None) -> CommandResult:
        """Start cmd and return once it has survived the grace period.

        A command that exits during the grace period is reported like a
        foreground command and is not tracked.
        """
        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        cmd = cmd.strip()
        if not cmd:
            return CommandResult(cmd=cmd, error="empty command", background=True)

        proc = self._popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.PIPE,
            bufsize=1,
        )
        if isinstance(proc, str):
            return CommandResult(cmd=cmd, error=proc, background=True)

        early_output: List[str] = []
        early_lock = threading.Lock()

        def pump():
            for line in iter(proc.stdout.readline, ""):
                with early_lock:
                    early_output.append(line)
                self._emit("output", line, proc.pid)
            proc.stdout.close()
            rc = proc.wait()
            self._emit("stop", str(rc), proc.pid)
            with self._lock:
                if self._active is proc:
                    self._active = None
                    self._active_cmd = ""

        with self._lock:
            self._active = proc
            self._active_cmd = cmd

        self._emit("start", cmd, proc.pid)
        threading.Thread(target=pump, name=f"relay-proc-{proc.pid}", daemon=True).start()

        try:
            proc.wait(timeout=grace)
            exited = True
        except subprocess.TimeoutExpired:
            exited = False

        with early_lock:
            output = "".join(early_output)

        if exited:
            with self._lock:
                if self._active is proc:
                    self._active = None
                    self._active_cmd = ""
            return CommandResult(cmd=cmd, rc=proc.returncode, stdout=_truncate(output),
                                 background=True, pid=proc.pid)

        get_logger().log("tools", "BACKGROUND_PROCESS_STARTED", {"cmd": cmd, "pid": proc.pid})
        return CommandResult(cmd=cmd, stdout=_truncate(output), background=True,
                             running=True, pid=proc.pid)

    @property
    def active_pid(self) -> Optional[int]:
        with self._lock:
            if self._active is not None and self._active.poll() is None:
                return self._active.pid
            return None

    @property
    def active_command(self) -> str:
        with self._lock:
            return self._active_cmd

    def kill(self) -> bool:
        """Stop the tracked background process. Returns False if none is running."""
        with self._lock:
            proc = self._active
            self._active = None
            self._active_cmd = ""
        if proc is None or proc.poll() is not None:
            return False
        _stop(proc)
        self._emit("killed", "", proc.pid)
        return True

    def write_input(self, data: str) -> bool:
        """Write to the tracked process's stdin."""
        with self._lock:
            proc = self._active
        if proc is None or proc.poll() is not None or proc.stdin is None:
            return False
        try:
            proc.stdin.write(data)
            proc.stdin.flush()
        except (OSError, ValueError):
            return False
        return True
