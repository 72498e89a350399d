#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tool dispatch for agent tool tags.

Every operation returns a ToolResult and never raises: failures become error
results the acting agent can read and correct on its next turn. Mutating
operations go through the approval gate unless auto-apply is on, and are
refused outright in read-only (analysis) mode.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

from relay import config
from relay.debug_logger import get_logger
from relay.llm.tag_parser import ToolTag, find_all_tags
from relay.models.messages import Proposal, ToolResult
from relay.tools.approval import ProposalManager
from relay.tools.assets import ImageService, SearchService, validate_aspect_ratio, validate_resize
from relay.tools.command_runner import CommandResult, ProcessManager
from relay.tools.errors import (
    ToolError,
    ToolErrorType,
    anchor_not_found_error,
    file_not_found_error,
    not_permitted_error,
    rejected_error,
    service_unavailable_error,
    timeout_error,
    validation_error,
)
from relay.tools.file_ops import (
    FileService,
    WorkingSet,
    apply_hunks,
    normalize_path,
    parse_patch_hunks,
    replace_block,
    strip_body,
)


MUTATING_TOOLS = frozenset({
    "write_file", "patch", "replace", "execute_command",
    "generate_image", "resize_image", "save_asset",
})

LEGACY_BATCH_TOOLS = ["write_file", "read_file", "search"]


def _ok(llm_text: str, user_text: str, action: Optional[Dict[str, object]] = None) -> ToolResult:
    return ToolResult(llm_output_text=llm_text, user_facing_text=user_text, structured_action=action)


class ToolDispatcher:
    """Executes parsed tool tags against the workspace."""

    def __init__(
        self,
        files: FileService,
        proposals: Optional[ProposalManager] = None,
        processes: Optional[ProcessManager] = None,
        working_set: Optional[WorkingSet] = None,
        image_service: Optional[ImageService] = None,
        search_service: Optional[SearchService] = None,
        auto_apply: bool = config.AUTO_APPLY,
        read_only: bool = False,
    ):
        self.files = files
        self.proposals = proposals or ProposalManager()
        self.processes = processes or ProcessManager()
        self.working_set = working_set if working_set is not None else WorkingSet()
        self.image_service = image_service
        self.search_service = search_service
        self.auto_apply = auto_apply
        self.read_only = read_only
        self.cancel_event: Optional[threading.Event] = None
        self._modified: List[str] = []

        self._handlers: Dict[str, Callable[[ToolTag], ToolResult]] = {
            "write_file": lambda t: self.write_file(t.attrs["path"], strip_body(t.body)),
            "patch": lambda t: self.patch_file(t.attrs["path"], t.body),
            "replace": lambda t: self.replace_in_file(t.attrs["path"], t.attrs.get("old", ""), t.attrs.get("new", "")),
            "read_file": lambda t: self.read_file(t.attrs["path"]),
            "execute_command": lambda t: self.execute_command(t.body, background=t.attrs.get("background") == "true"),
            "generate_image": lambda t: self.generate_image(t.attrs["prompt"], t.attrs.get("aspect_ratio")),
            "resize_image": lambda t: self.resize_image(
                t.attrs["path"], int(t.attrs["width"]), int(t.attrs["height"]), t.attrs.get("format")
            ),
            "save_asset": lambda t: self.save_asset(t.attrs["src"], t.attrs["dest"]),
            "search": lambda t: self.search(t.attrs["query"], t.attrs.get("type") or "code"),
        }

    # ---- entry points ----

    def dispatch(self, tag: ToolTag) -> ToolResult:
        """Execute one parsed tag."""
        handler = self._handlers.get(tag.kind)
        if handler is None:
            return validation_error(f"unknown tool '{tag.kind}'", tag.kind).to_result()
        try:
            result = handler(tag)
        except Exception as e:
            error = ToolError.from_exception(e, tag.kind)
            get_logger().log_tool_execution(tag.kind, tag.attrs, error=error.message)
            return error.to_result()

        get_logger().log_tool_execution(
            tag.kind, tag.attrs,
            result=result.llm_output_text,
            error=None if result.success else result.llm_output_text,
        )
        return result

    def execute_tools(self, text: str) -> str:
        """Run every write, read and search tag in a complete response.

        Returns the concatenated user-facing output.
        """
        output = []
        for tag in find_all_tags(text, LEGACY_BATCH_TOOLS):
            output.append(self.dispatch(tag).user_facing_text)
        return "".join(output)

    def take_modified_files(self) -> List[str]:
        """Return and forget the paths written since the last call."""
        modified, self._modified = list(dict.fromkeys(self._modified)), []
        return modified

    # ---- helpers ----

    def _guard(self, tool_name: str) -> Optional[ToolResult]:
        if self.read_only and tool_name in MUTATING_TOOLS:
            return not_permitted_error(tool_name).to_result()
        return None

    def _approve(self, kind: str, path: str, original: str, modified: str) -> Tuple[bool, str]:
        """Ask for approval unless auto-applying; returns (accepted, content to apply)."""
        if self.auto_apply:
            return True, modified
        proposal = Proposal(
            id=ProposalManager.new_id(),
            kind=kind,
            path=path,
            original=original,
            modified=modified,
        )
        decision = self.proposals.request_approval(proposal)
        if not decision.accepted:
            return False, modified
        return True, decision.content if decision.content is not None else modified

    def _read_existing(self, path: str) -> Optional[str]:
        if not self.files.exists(path):
            return None
        return self.files.read(path)

    def _commit_write(self, path: str, content: str) -> None:
        self.files.write(path, content)
        self.working_set.update(path, content)
        self._modified.append(normalize_path(path))

    # ---- file tools ----

    def write_file(self, path: str, content: str) -> ToolResult:
        blocked = self._guard("write_file")
        if blocked:
            return blocked

        original = self._read_existing(path)
        is_new = original is None
        accepted, content = self._approve("new" if is_new else "edit", path, original or "", content)
        if not accepted:
            return rejected_error(path, "write_file").to_result()

        self._commit_write(path, content)
        verb = "Created" if is_new else "Updated"
        return _ok(
            f"[System] Successfully wrote to {path}",
            f"\n> 📝 {verb} `{path}`\n",
            {"type": "write_file", "path": path, "new_file": is_new, "bytes": len(content)},
        )

    def replace_in_file(self, path: str, old: str, new: str) -> ToolResult:
        blocked = self._guard("replace")
        if blocked:
            return blocked

        original = self._read_existing(path)
        if original is None:
            return file_not_found_error(path, "replace").to_result()

        updated = replace_block(original, old, new)
        if updated is None:
            return anchor_not_found_error(path, "replace").to_result()

        accepted, updated = self._approve("edit", path, original, updated)
        if not accepted:
            return rejected_error(path, "replace").to_result()

        self._commit_write(path, updated)
        return _ok(
            f"[System] Successfully updated {path}",
            f"\n> ✏️ Edited `{path}`\n",
            {"type": "replace", "path": path},
        )

    def patch_file(self, path: str, body: str) -> ToolResult:
        """Apply hunks from body, or rewrite the whole file when it has none.

        Hunks are all-or-nothing: if any hunk fails to match, nothing is written.
        """
        blocked = self._guard("patch")
        if blocked:
            return blocked

        hunks = parse_patch_hunks(body)
        if hunks is None:
            return self.write_file(path, strip_body(body))

        original = self._read_existing(path)
        if original is None:
            return file_not_found_error(path, "patch").to_result()

        updated, failed = apply_hunks(original, hunks)
        if failed:
            error = anchor_not_found_error(path, "patch")
            error.message += f" (hunk {', '.join(str(i + 1) for i in failed)} of {len(hunks)})"
            return error.to_result()

        accepted, updated = self._approve("edit", path, original, updated)
        if not accepted:
            return rejected_error(path, "patch").to_result()

        self._commit_write(path, updated)
        return _ok(
            f"[System] Applied {len(hunks)} hunk(s) to {path}",
            f"\n> 🩹 Patched `{path}` ({len(hunks)} hunk(s))\n",
            {"type": "patch", "path": path, "hunks": len(hunks)},
        )

    def read_file(self, path: str) -> ToolResult:
        if not path:
            return validation_error("missing path", "read_file").to_result()
        if not self.files.exists(path):
            return file_not_found_error(path).to_result()

        content = self.files.read(path)
        self.working_set.update(path, content)

        shown = content
        if len(shown) > config.READ_RETURN_LIMIT:
            shown = shown[:config.READ_RETURN_LIMIT] + "\n...[truncated]..."
        return _ok(
            f"\n### FILE: {path}\n{shown}\n### END FILE\n",
            f"\n> 📖 Read `{path}`\n",
            {"type": "read_file", "path": path, "chars": len(content)},
        )

    # ---- process tools ----

    def execute_command(self, command: str, background: bool = False) -> ToolResult:
        blocked = self._guard("execute_command")
        if blocked:
            return blocked

        command = command.strip()
        if not command:
            return validation_error("empty command", "execute_command").to_result()

        accepted, command = self._approve("command", command, "", command)
        if not accepted:
            return rejected_error(command, "execute_command").to_result()

        if background:
            return self._background_result(self.processes.start_background(command))
        return self._foreground_result(self.processes.run(command, cancel_event=self.cancel_event))

    def _foreground_result(self, result: CommandResult) -> ToolResult:
        if result.error:
            return ToolError(ToolErrorType.VALIDATION_ERROR, f"execute_command: {result.error}",
                             context={"cmd": result.cmd}).to_result()
        if result.timed_out:
            return timeout_error(result.cmd, self.processes.timeout).to_result()

        parts = [f"[Command] `{result.cmd}`", f"Exit code: {result.rc}"]
        if result.interrupted:
            parts.append("(interrupted by user)")
        if result.stdout:
            parts.append(f"STDOUT:\n{result.stdout}")
        if result.stderr:
            parts.append(f"STDERR:\n{result.stderr}")
        icon = "✅" if result.ok else "⚠️"
        return ToolResult(
            llm_output_text="\n".join(parts),
            user_facing_text=f"\n> {icon} `{result.cmd}` exited with {result.rc}\n",
            structured_action={"type": "execute_command", "cmd": result.cmd, "rc": result.rc},
            success=result.ok,
        )

    def _background_result(self, result: CommandResult) -> ToolResult:
        if result.error:
            return ToolError(ToolErrorType.VALIDATION_ERROR, f"execute_command: {result.error}",
                             context={"cmd": result.cmd}).to_result()
        if not result.running:
            # Exited during the grace period
            return self._foreground_result(result)

        llm_text = f"[Command] `{result.cmd}` is running in the background (pid {result.pid})."
        if result.stdout:
            llm_text += f"\nInitial output:\n{result.stdout}"
        return _ok(
            llm_text,
            f"\n> 🚀 Started `{result.cmd}` in the background\n",
            {"type": "execute_command", "cmd": result.cmd, "background": True, "pid": result.pid},
        )

    def stop_process(self) -> ToolResult:
        if not self.processes.kill():
            return ToolError(ToolErrorType.NOT_FOUND, "stop_process: no background process is running").to_result()
        return _ok("[System] Background process stopped.", "\n> 🛑 Stopped background process\n",
                   {"type": "stop_process"})

    # ---- asset tools ----

    def generate_image(self, prompt: str, aspect_ratio: Optional[str] = None) -> ToolResult:
        blocked = self._guard("generate_image")
        if blocked:
            return blocked
        if self.image_service is None:
            return service_unavailable_error("Image", "generate_image").to_result()
        problem = validate_aspect_ratio(aspect_ratio)
        if problem:
            return validation_error(problem, "generate_image").to_result()

        path = self.image_service.generate(prompt, aspect_ratio)
        return _ok(
            f"[System] Image generated: {path}",
            f"\n> 🎨 Generated image `{path}`\n",
            {"type": "generate_image", "path": path, "prompt": prompt},
        )

    def resize_image(self, path: str, width: int, height: int, fmt: Optional[str] = None) -> ToolResult:
        blocked = self._guard("resize_image")
        if blocked:
            return blocked
        if self.image_service is None:
            return service_unavailable_error("Image", "resize_image").to_result()
        problem = validate_resize(width, height, fmt)
        if problem:
            return validation_error(problem, "resize_image").to_result()

        resized = self.image_service.resize(path, width, height, fmt)
        return _ok(
            f"[System] Resized: {resized}",
            f"\n> 🖼️ Resized `{path}` to {width}x{height}\n",
            {"type": "resize_image", "path": resized, "width": width, "height": height},
        )

    def save_asset(self, src: str, dest: str) -> ToolResult:
        blocked = self._guard("save_asset")
        if blocked:
            return blocked
        if not self.files.exists(src):
            return file_not_found_error(src, "save_asset").to_result()

        accepted, _ = self._approve("asset", dest, src, dest)
        if not accepted:
            return rejected_error(dest, "save_asset").to_result()

        self.files.copy(src, dest)
        self._modified.append(normalize_path(dest))
        return _ok(
            f"[System] Saved asset {src} -> {dest}",
            f"\n> 💾 Saved asset `{dest}`\n",
            {"type": "save_asset", "src": src, "dest": dest},
        )

    # ---- search ----

    def search(self, query: str, search_type: str = "code") -> ToolResult:
        if search_type != "code":
            if self.search_service is None:
                return service_unavailable_error("Search", "search").to_result()
            text = self.search_service.search(query, search_type)
            return _ok(
                f"[Search:{search_type}] {query}\n{text}",
                f"\n> 🔎 Searched ({search_type}): {query}\n",
                {"type": "search", "query": query, "search_type": search_type},
            )

        matches, truncated = self.files.search(query)
        if not matches:
            llm_text = f"[Search] No matches for '{query}'."
        else:
            lines = [f"{m['file']}:{m['line']}: {m['text']}" for m in matches]
            llm_text = f"[Search] {len(matches)} match(es) for '{query}':\n" + "\n".join(lines)
            if truncated:
                llm_text += "\n...[more matches omitted]..."
        return _ok(
            llm_text,
            f"\n> 🔎 Searched code for `{query}` ({len(matches)} match(es))\n",
            {"type": "search", "query": query, "matches": len(matches), "truncated": truncated},
        )
