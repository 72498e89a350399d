#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Repetition-loop detection for streamed agent output.

Two detectors run over a trailing window of the current turn's output:

- State oscillation: line-anchored trigger phrases ("Wait.", "Ready.", ...)
  counted outside safe zones.
- Literal repetition: the trailing suffix of the window already appeared
  earlier in the window.

Safe zones are markdown code fences and tool-tag bodies. Code legitimately
repeats itself, so triggers inside them are ignored and the literal check
uses a longer suffix when the text currently ends inside one.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from relay import config
from relay.debug_logger import get_logger
from relay.llm.tag_parser import BODY_TAG_NAMES


INTERVENTION_NOTICE = (
    "\n\n> ⚠️ **[System Intervention]**: Repetitive output detected. "
    "Generation was stopped and the repeated text removed.\n"
)

Span = Tuple[int, int]


@dataclass(frozen=True)
class LoopAnalysis:
    is_looping: bool
    trim_index: int = -1
    reason: str = ""


@dataclass
class LoopPolicy:
    """Tunable heuristics for loop detection."""
    window_size: int = config.LOOP_WINDOW_SIZE
    repetition_threshold: int = config.LOOP_REPETITION_THRESHOLD
    min_text_length: int = config.LOOP_MIN_TEXT_LENGTH
    suffix_size: int = config.LOOP_SUFFIX_SIZE
    safe_zone_suffix_size: int = config.LOOP_SAFE_ZONE_SUFFIX_SIZE
    trim_ratio: float = config.LOOP_TRIM_RATIO
    trigger_patterns: Sequence[str] = field(default_factory=lambda: tuple(config.LOOP_TRIGGER_PATTERNS))
    safe_tags: Sequence[str] = BODY_TAG_NAMES


_FENCE_RE = re.compile(r"```")


def _fence_spans(text: str) -> List[Span]:
    positions = [m.start() for m in _FENCE_RE.finditer(text)]
    spans = []
    for i in range(0, len(positions), 2):
        start = positions[i]
        end = positions[i + 1] + 3 if i + 1 < len(positions) else len(text)
        spans.append((start, end))
    return spans


def _tag_spans(text: str, tags: Sequence[str]) -> List[Span]:
    names = "|".join(re.escape(t) for t in tags)
    token_re = re.compile(rf"<(/?)({names})\b[^>]*>")

    spans = []
    depth = 0
    start = 0
    for match in token_re.finditer(text):
        if match.group(0).endswith("/>"):
            continue
        if match.group(1):
            if depth > 0:
                depth -= 1
                if depth == 0:
                    spans.append((start, match.end()))
        else:
            if depth == 0:
                start = match.start()
            depth += 1
    if depth > 0:
        spans.append((start, len(text)))
    return spans


def find_safe_zones(text: str, tags: Sequence[str] = BODY_TAG_NAMES) -> List[Span]:
    """Return [start, end) spans covered by code fences or tool-tag bodies."""
    return sorted(_fence_spans(text) + _tag_spans(text, tags))


def _in_spans(pos: int, spans: List[Span]) -> bool:
    return any(start <= pos < end for start, end in spans)


class LoopDetector:
    """Stateless analyzer; call analyze() with the full output of the turn so far."""

    def __init__(self, policy: Optional[LoopPolicy] = None):
        self.policy = policy or LoopPolicy()
        self._triggers = [re.compile(p) for p in self.policy.trigger_patterns]

    def analyze(self, full_text: str) -> LoopAnalysis:
        policy = self.policy
        length = len(full_text)
        if length < policy.min_text_length:
            return LoopAnalysis(False)

        safe_zones = find_safe_zones(full_text, policy.safe_tags)
        window_start = max(0, length - policy.window_size)
        window = full_text[window_start:]

        oscillations = 0
        for pattern in self._triggers:
            for match in pattern.finditer(window):
                # Position of the phrase itself, not the preceding newline
                phrase_pos = window_start + match.end() - 1
                if not _in_spans(phrase_pos, safe_zones):
                    oscillations += 1

        if oscillations >= policy.repetition_threshold:
            trim_index = max(0, int(length - policy.window_size * policy.trim_ratio))
            get_logger().log("loop", "STATE_OSCILLATION", {
                "triggers": oscillations,
                "trim_index": trim_index,
            }, "WARNING")
            return LoopAnalysis(True, trim_index, "state_oscillation")

        ends_in_safe_zone = _in_spans(length - 1, safe_zones)
        suffix_size = policy.safe_zone_suffix_size if ends_in_safe_zone else policy.suffix_size

        if len(window) > suffix_size * 2:
            suffix = window[-suffix_size:]
            search_pool = window[:-suffix_size]
            idx = search_pool.rfind(suffix)
            if idx != -1:
                trim_index = window_start + idx
                get_logger().log("loop", "LITERAL_REPETITION", {
                    "suffix_size": suffix_size,
                    "trim_index": trim_index,
                }, "WARNING")
                return LoopAnalysis(True, trim_index, "literal_repetition")

        return LoopAnalysis(False)
