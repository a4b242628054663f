"""
Recovering structured values from free-form model output.

Models are asked for JSON but routinely wrap it in prose, emit exploratory
objects before the final one, or get cut off mid-object. Every function here
is pure and total: a miss is ``None`` or an empty mapping, never an exception.
"""

from __future__ import annotations

import json
import random
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

METRIC_KEYS = ("economy", "security", "diplomacy", "environment", "approval", "stability")
METRIC_MIN = -100.0
METRIC_MAX = 100.0

IMPACT_LEVELS = ("low", "medium", "high", "extreme")
LEVEL_RANGES: dict[str, tuple[int, int]] = {
    "low": (5, 10),
    "medium": (15, 30),
    "high": (30, 50),
}

_METRIC_SYNONYMS = {
    "public_opinion": "approval",
    "public opinion": "approval",
    "opinion": "approval",
    "civil_liberties": "approval",
    "national_security": "security",
    "national security": "security",
    "geopolitical_standing": "diplomacy",
    "geopolitics": "diplomacy",
    "geopolitical": "diplomacy",
    "tech_sector_confidence": "stability",
    "tech": "stability",
    "technology": "stability",
    "climate": "environment",
}

_OPINION_KEY = "advisor_opinion"
_OPINION_RE = re.compile(r'"advisor_opinion"\s*:\s*"((?:[^"\\]|\\.)*)"', re.IGNORECASE)
_IMPACT_ENTRY_RE = re.compile(r'"([^"{}]+)"\s*:\s*(\{[^{}]*\})')
_SENTENCE_RE = re.compile(r"[^.?!]*[.?!]")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_META_LIKE_RE = re.compile(r"[{}\[\]<>()]")
_MD_BOLD_RE = re.compile(r"\*\*")
_BACKTICKS_RE = re.compile(r"`+")
_BREAKING_LINE_RE = re.compile(r"^\s*#Breaking\b.*$", re.MULTILINE)
_ADVISORS_HEADER_RE = re.compile(r"^\s*💼\s*Your advisors weigh in:\s*$", re.MULTILINE)


@dataclass(frozen=True)
class ImpactDecision:
    level: str
    direction: str
    justification: str | None = None


def match_balanced_brace(text: str, start: int) -> int | None:
    """Index of the ``}`` closing the ``{`` at ``start``, honouring JSON strings."""
    if start < 0 or start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def scan_json_objects(text: str) -> list[str]:
    """Every top-level balanced ``{...}`` fragment, in order of appearance."""
    fragments: list[str] = []
    i = 0
    while i < len(text):
        if text[i] != "{":
            i += 1
            continue
        end = match_balanced_brace(text, i)
        if end is None:
            i += 1
            continue
        fragments.append(text[i : end + 1])
        i = end + 1
    return fragments


def _load_object(fragment: str) -> dict[str, Any] | None:
    try:
        value = json.loads(fragment)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _objects_last_first(text: str) -> Iterator[dict[str, Any]]:
    for fragment in reversed(scan_json_objects(text)):
        obj = _load_object(fragment)
        if obj is not None:
            yield obj


def looks_meta(text: str) -> bool:
    """Commentary about the answer rather than the answer itself."""
    low = text.lower()
    if low.startswith("i am ") or low.startswith("i'm "):
        return True
    return "thinking" in low or "reasoning" in low or "let me" in low


def looks_meta_like(text: str) -> bool:
    # Brackets in an opinion mean markup or JSON leaked through.
    text = text.strip()
    return bool(text) and bool(_META_LIKE_RE.search(text))


def sanitize_opinion(text: str) -> str:
    text = text.strip().strip("`").strip('"“”').strip()
    collapsed = " ".join(text.split())
    if not collapsed:
        return ""
    sentences = [s.strip() for s in _SENTENCE_RE.findall(collapsed)]
    sentences = [s for s in sentences if s]
    if sentences:
        return " ".join(sentences[:3])
    return collapsed


def _after_colon(line: str) -> str:
    _, sep, rest = line.partition(":")
    return rest.strip() if sep else line.strip()


def _unescape_json_string(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value


def extract_opinion(text: str | None) -> str | None:
    """
    Advisor opinion from model output, or None.

    Tried in order: the last parseable JSON object carrying
    ``advisor_opinion``; a regex capture of the quoted value after the key;
    a labelled "advisor opinion:" / "final advisory" line; the first
    paragraph that is not meta-commentary.
    """
    raw = (text or "").strip()
    if not raw:
        return None

    if _OPINION_KEY in raw.lower():
        for obj in _objects_last_first(raw):
            value = obj.get(_OPINION_KEY)
            if isinstance(value, str):
                opinion = sanitize_opinion(value)
                if opinion:
                    return opinion
        matches = _OPINION_RE.findall(raw)
        if matches:
            opinion = sanitize_opinion(_unescape_json_string(matches[-1]))
            if opinion:
                return opinion

    for line in raw.splitlines():
        low = line.lower()
        if "advisor opinion" in low or "final advisory" in low:
            opinion = sanitize_opinion(_after_colon(line))
            if opinion:
                return opinion

    for paragraph in _PARAGRAPH_RE.split(raw):
        paragraph = paragraph.strip()
        if not paragraph or looks_meta(paragraph):
            continue
        return sanitize_opinion(paragraph) or None
    return None


def normalize_metric_key(key: str) -> str:
    key = key.strip().lower()
    return _METRIC_SYNONYMS.get(key, key)


def _normalize_direction(direction: str) -> str | None:
    direction = direction.strip().lower()
    if direction == "none":
        return "0"
    return direction if direction in ("+", "-", "0") else None


def _decision_from(value: Any) -> ImpactDecision | None:
    if not isinstance(value, dict):
        return None
    level = value.get("level")
    direction = value.get("direction")
    if not isinstance(level, str) or not isinstance(direction, str):
        return None
    level = level.strip().lower()
    normalized = _normalize_direction(direction)
    if level not in IMPACT_LEVELS or normalized is None:
        return None
    justification = value.get("justification")
    return ImpactDecision(
        level=level,
        direction=normalized,
        justification=justification if isinstance(justification, str) and justification else None,
    )


def _impacts_from_object(obj: dict[str, Any]) -> dict[str, ImpactDecision]:
    raw = obj.get("impacts", obj.get("impact"))
    if not isinstance(raw, dict):
        return {}
    out: dict[str, ImpactDecision] = {}
    for key, value in raw.items():
        decision = _decision_from(value)
        if decision is not None:
            out[normalize_metric_key(str(key))] = decision
    return out


def _last_impact_key(text: str) -> int:
    low = text.lower()
    idx = low.rfind('"impacts"')
    return idx if idx >= 0 else low.rfind('"impact"')


def _fragment_around_last_key(text: str) -> str | None:
    idx = _last_impact_key(text)
    if idx < 0:
        return None
    open_idx = text.rfind("{", 0, idx + 1)
    if open_idx < 0:
        return None
    end = match_balanced_brace(text, open_idx)
    return text[open_idx : end + 1] if end is not None else None


def _impacts_from_truncated(text: str) -> dict[str, ImpactDecision]:
    # Output cut off mid-object: salvage the complete per-metric entries.
    idx = _last_impact_key(text)
    if idx < 0:
        return {}
    out: dict[str, ImpactDecision] = {}
    for key, body in _IMPACT_ENTRY_RE.findall(text[idx:]):
        decision = _decision_from(_load_object(body))
        if decision is not None:
            out[normalize_metric_key(key)] = decision
    return out


def extract_impacts(text: str | None) -> dict[str, ImpactDecision]:
    """Per-metric impact decisions from model output; empty when none are found."""
    raw = (text or "").strip().strip("`")
    if not raw:
        return {}

    fragment = _fragment_around_last_key(raw)
    if fragment is not None:
        obj = _load_object(fragment)
        if obj is not None:
            found = _impacts_from_object(obj)
            if found:
                return found

    for obj in _objects_last_first(raw):
        found = _impacts_from_object(obj)
        if found:
            return found

    return _impacts_from_truncated(raw)


def convert_impacts_to_deltas(
    decisions: Mapping[str, ImpactDecision],
    current: Mapping[str, float],
    rng: random.Random | None = None,
) -> dict[str, float]:
    """
    Signed delta per metric.

    low/medium/high draw a whole number from their range; extreme moves the
    metric exactly onto the boundary from ``current``. Direction ``-``
    negates, ``0`` is always zero. Metrics without a decision get 0.
    """
    rng = rng or random.Random()
    deltas: dict[str, float] = {}
    for key in METRIC_KEYS:
        decision = decisions.get(key)
        if decision is None or decision.direction == "0":
            deltas[key] = 0.0
            continue
        negative = decision.direction == "-"
        if decision.level == "extreme":
            value = float(current.get(key, 0.0))
            deltas[key] = (METRIC_MIN - value) if negative else (METRIC_MAX - value)
            continue
        low, high = LEVEL_RANGES.get(decision.level, LEVEL_RANGES["low"])
        magnitude = float(rng.randint(low, high))
        deltas[key] = -magnitude if negative else magnitude
    return deltas


def parse_legacy_metrics(text: str | None) -> dict[str, float] | None:
    """Older ``{"metrics": {"economy": 5, ...}}`` integer-delta format."""
    for obj in _objects_last_first((text or "").strip()):
        metrics = obj.get("metrics")
        if not isinstance(metrics, dict) or not metrics:
            continue
        values = {k: v for k, v in metrics.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
        if not values:
            continue
        return {key: float(values.get(key, 0)) for key in METRIC_KEYS}
    return None


def extract_action_analysis(text: str | None) -> str:
    """The "Action Analysis" narrative without metric sections or trailing JSON."""
    s = (text or "").strip()
    if not s:
        return ""

    low = s.lower()
    cut = -1
    for key in ('"impacts"', '"impact"', '"metrics"'):
        cut = low.rfind(key)
        if cut >= 0:
            break
    if cut >= 0:
        open_idx = s.rfind("{", 0, cut + 1)
        s = s[: open_idx if open_idx >= 0 else cut].strip()

    start, end = s.rfind("{"), s.rfind("}")
    if start >= 0 and end > start:
        s = s[:start].strip()

    idx = s.lower().find("metric impact")
    if idx >= 0:
        s = s[:idx].strip()
    idx = s.lower().find("action analysis")
    if idx >= 0:
        s = s[idx:].strip()
    return s


def sanitize_event_text(text: str) -> str:
    """Strip markdown noise and collapse runs of blank lines."""
    if not text:
        return text
    text = _MD_BOLD_RE.sub("", text).replace("*", "")
    text = _BACKTICKS_RE.sub("", text)
    text = _ADVISORS_HEADER_RE.sub("", text)
    text = _BREAKING_LINE_RE.sub("", text)

    lines: list[str] = []
    previous_blank = False
    for line in text.split("\n"):
        line = line.rstrip(" \t")
        if not line.strip():
            if previous_blank:
                continue
            previous_blank = True
            lines.append("")
            continue
        previous_blank = False
        lines.append(line)
    return "\n".join(lines).strip()
