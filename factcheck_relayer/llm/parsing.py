"""Tolerant parsers for loosely structured model output.

Models answer with JSON-ish snippets embedded in prose, sometimes with single
quotes and bare percent signs (``{'Fact_score': 97%}``). These functions pull
out the first object, normalize it and return typed values, raising
``ParseError`` for anything they cannot make sense of.
"""

import json
import re
from typing import Any, Iterable, List

from factcheck_relayer.errors import ParseError
from factcheck_relayer.models.schemas import Claim

# First "{" to last "}": used for claim lists, whose values may contain braces
GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")
# First "{" to the next "}": used for flat score objects
FLAT_OBJECT = re.compile(r"\{[^}]*\}", re.DOTALL)


def find_json_object(text: str, greedy: bool = False) -> str:
    """
    Locate the first brace-delimited substring in model output.

    Args:
        text: Raw model output.
        greedy: Match up to the last closing brace instead of the first.

    Returns:
        The matched substring, braces included.

    Raises:
        ParseError: If the text holds no brace-delimited substring.
    """
    pattern = GREEDY_OBJECT if greedy else FLAT_OBJECT
    match = pattern.search(text or "")
    if not match:
        raise ParseError("No JSON object found in model output", raw_text=text)
    return match.group(0)


def parse_claims(text: str, max_claims: int = 1) -> List[Claim]:
    """
    Parse a ``{"claims": [...]}`` answer into at most ``max_claims`` claims.

    Raises:
        ParseError: If no object is found, it is not valid JSON, ``claims`` is
            not a list, or a list entry is not a string.
    """
    snippet = find_json_object(text, greedy=True)

    try:
        data = json.loads(snippet)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid claims JSON: {e}", raw_text=text) from e

    if not isinstance(data, dict) or not isinstance(data.get("claims"), list):
        raise ParseError("Claims JSON missing `claims` array", raw_text=text)

    claims = []
    for entry in data["claims"]:
        if not isinstance(entry, str):
            raise ParseError(
                f"Claim entries must be strings, got {type(entry).__name__}",
                raw_text=text,
            )
        entry = entry.strip()
        if entry:
            claims.append(Claim(text=entry))

    return claims[:max_claims]


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_percentage(text: str, field: str) -> str:
    """
    Extract a percentage field such as ``Fact_score`` or ``bias_score``.

    Single quotes are normalized to double quotes and percent signs are
    stripped before parsing, so ``{"Fact_score": 73}``,
    ``{'Fact_score': "73%"}`` and ``{'Fact_score': 73%}`` all yield ``"73%"``.

    Raises:
        ParseError: If no object is found, it does not parse, or the field is
            missing or neither a number nor a string.
    """
    snippet = find_json_object(text)
    normalized = snippet.replace("'", '"').replace("%", "").strip()

    try:
        data = json.loads(normalized)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON for {field}: {e}", raw_text=text) from e

    if not isinstance(data, dict):
        raise ParseError(f"Expected an object holding {field}", raw_text=text)

    value = data.get(field)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ParseError(f"{field} missing or invalid", raw_text=text)

    score = _format_number(value)
    if not score:
        raise ParseError(f"{field} is empty", raw_text=text)

    return score if score.endswith("%") else f"{score}%"


def parse_score_value(score: str) -> float:
    """Turn a percentage string like ``"87%"`` back into ``87.0``."""
    try:
        return float(str(score).replace("%", "").strip())
    except ValueError as e:
        raise ParseError(f"Score is not numeric: {score!r}", raw_text=str(score)) from e


def average_score(scores: Iterable[str]) -> str:
    """Unweighted mean of percentage strings, ``"0.00%"`` when empty."""
    values = [parse_score_value(s) for s in scores]
    avg = sum(values) / len(values) if values else 0.0
    return f"{avg:.2f}%"
