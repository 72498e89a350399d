"""Extract tool tags, task markers and structured data from agent text.

Agents invoke tools by writing small XML-like tags into their output, e.g.
``<read_file>src/app.py</read_file>``. Each grammar is a single anchored
pattern; an incomplete tag simply does not match until its closing delimiter
has streamed in.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from relay.models.task import Task, TaskStatus


@dataclass(frozen=True)
class ToolTag:
    """A complete tool tag found in agent output."""
    kind: str
    attrs: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    start: int = 0
    end: int = 0
    raw: str = ""


_TAG_PATTERNS: Dict[str, re.Pattern] = {
    "write_file": re.compile(
        r'<write_file\s+path="(?P<path>[^"]+)"\s*>(?P<body>[\s\S]*?)</write_file>'
    ),
    "patch": re.compile(
        r'<patch\s+path="(?P<path>[^"]+)"\s*>(?P<body>[\s\S]*?)</patch>'
    ),
    "replace": re.compile(
        r'<replace\s+path="(?P<path>[^"]+)"\s*>\s*<old>(?P<old>[\s\S]*?)</old>\s*'
        r'<new>(?P<new>[\s\S]*?)</new>\s*</replace>'
    ),
    "read_file": re.compile(r"<read_file>(?P<path>.*?)</read_file>"),
    "execute_command": re.compile(
        r'<execute_command(?:\s+background=["\'](?P<background>true|false)["\'])?\s*>'
        r"(?P<body>[\s\S]*?)</execute_command>"
    ),
    "generate_image": re.compile(
        r'<generate_image\s+prompt="(?P<prompt>[^"]+)"(?:\s+aspect_ratio="(?P<aspect_ratio>[^"]+)")?\s*/>'
    ),
    "resize_image": re.compile(
        r'<resize_image\s+path="(?P<path>[^"]+)"\s+width="?(?P<width>\d+)"?\s+height="?(?P<height>\d+)"?'
        r'(?:\s+format="(?P<format>[^"]+)")?\s*/>'
    ),
    "save_asset": re.compile(
        r'<save_asset\s+src="(?P<src>[^"]+)"\s+dest="(?P<dest>[^"]+)"\s*/>'
    ),
    "search": re.compile(
        r'<search\s+query="(?P<query>[^"]+)"(?:\s+type="(?P<type>[^"]+)")?\s*/>'
    ),
}

TOOL_TAG_NAMES = tuple(_TAG_PATTERNS.keys())

# Tags whose bodies are delimited; used to find safe zones in agent output
BODY_TAG_NAMES = ("write_file", "patch", "replace", "old", "new", "read_file", "execute_command")

_MARKER_PATTERNS = {
    "completed": re.compile(r"\[COMPLETED:([^\]]+)\]", re.IGNORECASE),
    "verified": re.compile(r"\[VERIFIED:([^\]]+)\]", re.IGNORECASE),
    "rejected": re.compile(r"\[REJECTED:([^\]]+)\]", re.IGNORECASE),
}

MARKER_STATUS = {
    "verified": TaskStatus.COMPLETED,
    "rejected": TaskStatus.REJECTED,
}

_STRICT_CHECKLIST_RE = re.compile(
    r"^\s*- \[ \] \*\*(Task \d+):\*\* (.*?)(?:\*Verify by:\* (.*))?$", re.MULTILINE
)
_LOOSE_CHECKLIST_RE = re.compile(
    r"^\s*(?:-|\*|\d+\.)\s*(?:\[\s*\]\s*)?(?:\*\*)?(Task\s*\d+):?(?:\*\*)?:?\s*(.*?)$|"
    r"^\s*(?:-|\*|\d+\.)\s*(?:\[\s*\]\s*)?(.*?)$",
    re.MULTILINE,
)
_MIN_LOOSE_DESCRIPTION = 6

# Tools whose bodies may quote other tags verbatim
_CONTAINER_TOKEN_RE = re.compile(r"<(/?)(write_file|patch|replace|execute_command)\b[^>]*>")

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_FINISH_RE = re.compile(r"\[FINISH\]", re.IGNORECASE)


def _tag_from_match(kind: str, match: re.Match) -> ToolTag:
    groups = {k: v for k, v in match.groupdict().items() if v is not None}
    body = groups.pop("body", "")
    if kind == "read_file":
        groups["path"] = groups.get("path", "").strip()
    return ToolTag(
        kind=kind,
        attrs=groups,
        body=body,
        start=match.start(),
        end=match.end(),
        raw=match.group(0),
    )


def parse_tool_tags(text: str) -> Dict[str, Optional[ToolTag]]:
    """Return the first complete match for each tool grammar (None when absent)."""
    results: Dict[str, Optional[ToolTag]] = {}
    for kind, pattern in _TAG_PATTERNS.items():
        match = pattern.search(text)
        results[kind] = _tag_from_match(kind, match) if match else None
    return results


def find_first_tag(text: str) -> Optional[ToolTag]:
    """Return the earliest complete tool tag in text."""
    found = [tag for tag in parse_tool_tags(text).values() if tag is not None]
    if not found:
        return None
    return min(found, key=lambda t: t.start)


def inside_open_body(text: str, pos: int) -> bool:
    """Whether pos falls inside a body tag opened before it and not yet closed."""
    depth = 0
    for match in _CONTAINER_TOKEN_RE.finditer(text, 0, pos):
        if match.group(0).endswith("/>"):
            continue
        if match.group(1):
            depth = max(depth - 1, 0)
        else:
            depth += 1
    return depth > 0


def find_all_tags(text: str, kinds: Optional[List[str]] = None) -> List[ToolTag]:
    """Return every complete top-level tag (optionally limited to kinds), in order of appearance.

    Tags quoted inside another tag's body belong to that body and are skipped.
    """
    tags: List[ToolTag] = []
    for kind, pattern in _TAG_PATTERNS.items():
        tags.extend(_tag_from_match(kind, m) for m in pattern.finditer(text))

    top_level: List[ToolTag] = []
    covered = 0
    for tag in sorted(tags, key=lambda t: (t.start, -t.end)):
        if tag.start < covered:
            continue
        covered = tag.end
        if not kinds or tag.kind in kinds:
            top_level.append(tag)
    return top_level


class TagScanner:
    """Incremental tag scanner over a streamed response.

    Only the unconsumed tail of the stream is kept: text after a dispatched
    tag, or text from the earliest position where a tag could still begin.
    A tag that completes inside a body tag still being streamed is held
    back; it becomes part of that body once the outer tag closes.
    Returned tags carry start/end offsets into the whole stream.
    """

    _OPENERS = tuple(f"<{name}" for name in TOOL_TAG_NAMES)

    def __init__(self):
        self._buffer = ""
        self._base = 0

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> List[ToolTag]:
        """Add a chunk and return the tags it completed, in order."""
        self._buffer += chunk
        completed: List[ToolTag] = []
        while True:
            tag = find_first_tag(self._buffer)
            if tag is None or inside_open_body(self._buffer, tag.start):
                break
            completed.append(replace(tag, start=self._base + tag.start, end=self._base + tag.end))
            self._buffer = self._buffer[tag.end:]
            self._base += tag.end
        cut = self._earliest_possible_start()
        self._buffer = self._buffer[cut:]
        self._base += cut
        return completed

    def reset(self) -> None:
        self._buffer = ""
        self._base = 0

    def _earliest_possible_start(self) -> int:
        pos = self._buffer.find("<")
        while pos != -1:
            fragment = self._buffer[pos:]
            for opener in self._OPENERS:
                if fragment.startswith(opener) or opener.startswith(fragment):
                    return pos
            pos = self._buffer.find("<", pos + 1)
        return len(self._buffer)


def parse_task_markers(text: str) -> Dict[str, List[str]]:
    """Find legacy [COMPLETED:..], [VERIFIED:..] and [REJECTED:..] markers."""
    return {
        name: [m.group(0) for m in pattern.finditer(text)]
        for name, pattern in _MARKER_PATTERNS.items()
    }


def extract_ids_from_tag(tag: str) -> List[str]:
    """Extract numeric task ids from a marker such as [COMPLETED: Task 1, 2]."""
    match = re.search(r"\[(?:COMPLETED|VERIFIED|REJECTED):([^\]]+)\]", tag, re.IGNORECASE)
    if not match:
        return []
    return re.findall(r"\d+", match.group(1))


def parse_checklist(text: str) -> List[Task]:
    """Parse a planner's markdown checklist into pending tasks.

    The strict form is tried first; the loose form accepts any bullet or
    numbered line and skips descriptions shorter than six characters.
    """
    tasks: List[Task] = []

    for match in _STRICT_CHECKLIST_RE.finditer(text):
        tasks.append(Task(id=match.group(1), description=match.group(2).strip()))

    if tasks:
        return tasks

    for match in _LOOSE_CHECKLIST_RE.finditer(text):
        task_label = match.group(1)
        description = (match.group(2) if task_label else match.group(3)) or ""
        description = description.strip().strip("*").strip()
        if len(description) < _MIN_LOOSE_DESCRIPTION:
            continue
        task_id = re.sub(r"\s+", " ", task_label).strip() if task_label else f"Task {len(tasks) + 1}"
        tasks.append(Task(id=task_id, description=description))

    return tasks


def parse_json(text: str) -> Optional[Any]:
    """Extract a JSON object from a fenced block or the first top-level {...} span.

    Returns None when nothing parses; absence of structured data is normal.
    """
    if not text:
        return None

    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    pos = text.find("{")
    while pos != -1:
        try:
            obj, _ = decoder.raw_decode(text, pos)
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass
        pos = text.find("{", pos + 1)
    return None


def contains_finish_sentinel(text: str) -> bool:
    """Whether an agent declared the whole workflow done with [FINISH]."""
    return bool(_FINISH_RE.search(text or ""))
