#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""File operations for relay: the workspace file service, the session
working set, and whitespace-tolerant block matching for edits."""

import os
import pathlib
import re
import shutil
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple

from relay import config
from relay.debug_logger import log_function


# ========== File service ==========

class FileService(ABC):
    """Workspace file access used by the tool dispatcher and context builder.

    Paths are workspace-relative. Implementations raise FileNotFoundError,
    PermissionError or OSError; the dispatcher turns those into tool errors.
    """

    @abstractmethod
    def read(self, path: str) -> str:
        pass

    @abstractmethod
    def write(self, path: str, content: str) -> None:
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def copy(self, src: str, dest: str) -> None:
        pass

    @abstractmethod
    def list_files(self, limit: int = 500) -> List[str]:
        pass

    @abstractmethod
    def search(self, pattern: str, max_matches: int = config.SEARCH_MATCH_LIMIT) -> Tuple[List[Dict[str, object]], bool]:
        """Regex search over workspace text files.

        Returns (matches, truncated) where each match is {file, line, text}.
        """


def _is_text_file(path: pathlib.Path) -> bool:
    """Check if file is text (no null bytes)."""
    try:
        with open(path, "rb") as f:
            return b"\x00" not in f.read(8192)
    except OSError:
        return False


class LocalFileService(FileService):
    """FileService over a directory on the local disk."""

    def __init__(self, root: Optional[pathlib.Path] = None):
        self.root = pathlib.Path(root or config.ROOT).resolve()

    def _safe_path(self, rel: str) -> pathlib.Path:
        """Resolve a path inside the workspace root, rejecting escapes."""
        rel = rel.strip().strip('"').strip("'")
        if not rel:
            raise ValueError("Empty path")
        candidate = pathlib.Path(rel)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise PermissionError(f"Path escapes the workspace: {rel}") from None
        return resolved

    def _rel(self, path: pathlib.Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _should_skip(self, path: pathlib.Path) -> bool:
        try:
            parts = path.relative_to(self.root).parts
        except ValueError:
            parts = path.parts
        return any(part in config.EXCLUDE_DIRS for part in parts)

    def _iter_files(self) -> Iterator[pathlib.Path]:
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in config.EXCLUDE_DIRS)
            for name in sorted(filenames):
                yield pathlib.Path(dirpath) / name

    def read(self, path: str) -> str:
        p = self._safe_path(path)
        if not p.exists():
            raise FileNotFoundError(f"Not found: {path}")
        if p.is_dir():
            raise IsADirectoryError(f"Is a directory: {path}")
        if p.stat().st_size > config.MAX_FILE_BYTES:
            raise OSError(f"Too large (> {config.MAX_FILE_BYTES} bytes): {path}")
        return p.read_text(encoding="utf-8", errors="replace")

    @log_function("tools")
    def write(self, path: str, content: str) -> None:
        p = self._safe_path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")

    def exists(self, path: str) -> bool:
        try:
            return self._safe_path(path).exists()
        except (PermissionError, ValueError):
            return False

    def copy(self, src: str, dest: str) -> None:
        src_path = self._safe_path(src)
        dest_path = self._safe_path(dest)
        if not src_path.is_file():
            raise FileNotFoundError(f"Not found: {src}")
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    def list_files(self, limit: int = 500) -> List[str]:
        files = []
        for p in self._iter_files():
            files.append(self._rel(p))
            if len(files) >= limit:
                break
        return files

    def search(self, pattern: str, max_matches: int = config.SEARCH_MATCH_LIMIT) -> Tuple[List[Dict[str, object]], bool]:
        try:
            rex = re.compile(pattern, re.IGNORECASE)
        except re.error:
            rex = re.compile(re.escape(pattern), re.IGNORECASE)

        matches: List[Dict[str, object]] = []
        for p in self._iter_files():
            try:
                if p.stat().st_size > config.MAX_FILE_BYTES or not _is_text_file(p):
                    continue
                with open(p, "r", encoding="utf-8", errors="ignore") as f:
                    for i, line in enumerate(f, 1):
                        if rex.search(line):
                            matches.append({"file": self._rel(p), "line": i, "text": line.rstrip("\n")})
                            if len(matches) >= max_matches:
                                return matches, True
            except OSError:
                continue
        return matches, False


# ========== Working set ==========

class WorkingSet:
    """Latest known content of every file read or written this session.

    Ordered by last touch, oldest first. Entries here supersede stale
    user-selected snapshots of the same path when context is rebuilt.
    """

    def __init__(self):
        self._files: Dict[str, str] = {}

    def update(self, path: str, content: str) -> None:
        key = normalize_path(path)
        self._files.pop(key, None)
        self._files[key] = content

    def get(self, path: str) -> Optional[str]:
        return self._files.get(normalize_path(path))

    def __contains__(self, path: str) -> bool:
        return normalize_path(path) in self._files

    def __len__(self) -> int:
        return len(self._files)

    def items(self) -> List[Tuple[str, str]]:
        return list(self._files.items())

    def paths(self) -> List[str]:
        return list(self._files.keys())

    def clear(self) -> None:
        self._files.clear()


def normalize_path(path: str) -> str:
    """Normalize a workspace-relative path for use as a key."""
    cleaned = path.strip().strip('"').strip("'").replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned


# ========== Block matching ==========

def find_fuzzy_block(content: str, search: str) -> Optional[str]:
    """Locate search in content ignoring indentation and blank lines.

    Each non-blank search line must equal (after stripping) a file line, in
    order; blank file lines between compared lines are skipped. Returns the
    exact original substring from the start of the first matched line to
    the end of the last, or None.
    """
    needles = [line.strip() for line in search.splitlines() if line.strip()]
    if not needles:
        return None

    lines = content.splitlines(keepends=True)
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line)

    stripped = [line.strip() for line in lines]
    for start, text in enumerate(stripped):
        if text != needles[0]:
            continue
        matched = 0
        idx = start
        last = start
        while matched < len(needles) and idx < len(lines):
            if not stripped[idx]:
                idx += 1
                continue
            if stripped[idx] != needles[matched]:
                break
            matched += 1
            last = idx
            idx += 1
        if matched == len(needles):
            end = offsets[last] + len(lines[last].rstrip("\r\n"))
            return content[offsets[start]:end]
    return None


def replace_block(content: str, old: str, new: str) -> Optional[str]:
    """Replace the first occurrence of old, exactly or via find_fuzzy_block.

    Returns the new content, or None when old cannot be located.
    """
    if old and old in content:
        return content.replace(old, new, 1)
    match = find_fuzzy_block(content, old)
    if match is None:
        return None
    return content.replace(match, new.strip("\n"), 1)


_OLD_NEW_HUNK_RE = re.compile(r"<old>([\s\S]*?)</old>\s*<new>([\s\S]*?)</new>")
_SEARCH_REPLACE_HUNK_RE = re.compile(
    r"<{5,9} ?SEARCH[^\n]*\n([\s\S]*?)\n?={5,9}\n([\s\S]*?)\n?>{5,9} ?REPLACE"
)


def parse_patch_hunks(body: str) -> Optional[List[Tuple[str, str]]]:
    """Split a patch body into (old, new) hunks.

    Accepts <old>/<new> pairs or SEARCH/REPLACE conflict-marker blocks.
    Returns None when the body has neither, meaning a whole-file rewrite.
    """
    hunks = [(m.group(1), m.group(2)) for m in _OLD_NEW_HUNK_RE.finditer(body)]
    if hunks:
        return hunks
    hunks = [(m.group(1), m.group(2)) for m in _SEARCH_REPLACE_HUNK_RE.finditer(body)]
    return hunks or None


def apply_hunks(content: str, hunks: List[Tuple[str, str]]) -> Tuple[str, List[int]]:
    """Apply hunks in order; returns (content, indexes of hunks that did not match)."""
    failed = []
    for i, (old, new) in enumerate(hunks):
        updated = replace_block(content, old, new)
        if updated is None:
            failed.append(i)
            continue
        content = updated
    return content, failed


def strip_body(body: str) -> str:
    """Drop the newline that conventionally follows an opening tag."""
    if body.startswith("\r\n"):
        return body[2:]
    if body.startswith("\n"):
        return body[1:]
    return body
