# Defensive parsing of the model's verdict text.
# Created: 2026-10-18

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from claimwatch.errors import VerificationParseFailure
from claimwatch.verify.models import Verdict

_VERDICT_RE = re.compile(r"VERDICT:\s*\**\s*(True|False|Mixed|Unverified)", re.IGNORECASE)
_SCORE_RE = re.compile(r"SCORE:\s*\**\s*(\d)", re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"EXPLANATION:\s*\**\s*(.+)", re.IGNORECASE)

NO_EXPLANATION = "No explanation provided."


@dataclass(frozen=True)
class ParsedVerdict:
    verdict: Verdict
    score: int
    explanation: str
    sources: list[dict[str, Any]] = field(default_factory=list)


def iter_json_objects(text: str):
    """Yield each top-level ``{...}`` span in *text*, skipping braces in strings."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def extract_json_object(text: str, required_key: str | None = None) -> dict[str, Any] | None:
    """Return the first top-level JSON object in *text* (holding *required_key*, if given)."""
    for candidate in iter_json_objects(text):
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict) and (required_key is None or required_key in value):
            return value
    return None


def coerce_score(value: object) -> int:
    """Scores outside 1..5 (or non-numeric) count as unscored (0)."""
    if isinstance(value, bool):
        return 0
    try:
        score = int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    return score if 1 <= score <= 5 else 0


def _from_labels(text: str) -> ParsedVerdict | None:
    verdict = _VERDICT_RE.search(text)
    score = _SCORE_RE.search(text)
    explanation = _EXPLANATION_RE.search(text)
    if not (verdict and score and explanation):
        return None
    return ParsedVerdict(
        verdict=Verdict.parse(verdict.group(1)),
        score=coerce_score(score.group(1)),
        explanation=explanation.group(1).strip() or NO_EXPLANATION,
    )


def parse_verification_text(text: str) -> ParsedVerdict:
    """Parse a verdict out of free-form model output.

    Accepts a JSON object (possibly wrapped in prose or code fences) or the
    ``VERDICT: / SCORE: / EXPLANATION:`` line format.

    Raises:
        VerificationParseFailure: nothing usable was found.
    """
    data = extract_json_object(text or "", required_key="verdict")
    if data is not None:
        sources = data.get("sources")
        if not isinstance(sources, list):
            sources = []
        return ParsedVerdict(
            verdict=Verdict.parse(data.get("verdict")),
            score=coerce_score(data.get("score")),
            explanation=str(data.get("explanation") or NO_EXPLANATION),
            sources=[s for s in sources if isinstance(s, dict)],
        )

    labelled = _from_labels(text or "")
    if labelled is not None:
        return labelled

    raise VerificationParseFailure(f"No verdict found in model output: {(text or '')[:120]!r}")
