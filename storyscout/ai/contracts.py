"""Response contracts for the classification and rating calls.

Each task has:
- a JSON Schema declared to the AI service (structured outputs)
- a local validator applied to whatever actually comes back
- a result dataclass that is what gets persisted

The service-side schema is a request, not a guarantee, so every response is
parsed and validated here before it is stored.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from jsonschema import Draft202012Validator

from storyscout.errors import ResponseParseError, ResponseValidationError


MAX_PROMPT_CHARS = 8000

RATING_FACTORS = ("narrative", "emotional", "historical", "uniqueness")

CLASSIFICATION_SYSTEM_PROMPT = """You are a historical content classifier for a community history preservation project.

Your task is to analyze social media posts and determine if they contain valuable historical content.

HISTORICAL CONTENT includes:
- Personal memories and stories from past decades
- Historical events (wars, political events, cultural milestones)
- Descriptions of places as they were in the past
- Family histories and immigration stories
- Old photographs or descriptions of historical photos
- Cultural and social changes over time
- Nostalgic recollections of neighborhoods, schools, workplaces

NOT HISTORICAL CONTENT:
- Current news or recent events (last 5 years)
- General opinions without historical context
- Promotional or commercial content
- Jokes or memes without historical value
- Simple greetings or short comments

CONFIDENCE SCORING:
- 90-100: Clear historical narrative with specific details (dates, places, names)
- 75-89: Historical content but less detailed
- 50-74: May have some historical elements but unclear
- Below 50: Not historical content

Always respond in the exact JSON format specified."""

RATING_SYSTEM_PROMPT = """You are an expert story quality evaluator for a platform preserving community history.

Rate the quality of this historical story/memory on these factors (1-5 scale each):
1. Narrative: How well-structured and engaging is the storytelling?
2. Emotional: Does the story evoke emotions or connection?
3. Historical: How significant is the historical information shared?
4. Uniqueness: How unique or rare is this story/perspective?

Also provide an overall rating (1-5) based on these factors.

Return JSON with this exact structure:
{"rating": <1-5>, "factors": {"narrative": <1-5>, "emotional": <1-5>, "historical": <1-5>, "uniqueness": <1-5>}}"""


# Declared to the service.
CLASSIFICATION_RESPONSE_FORMAT: Dict[str, Any] = {
    "name": "classification_result",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "is_historic": {"type": "boolean", "description": "Whether the post contains historical content"},
            "confidence": {"type": "number", "description": "Confidence score from 0 to 100"},
            "reason": {"type": "string", "description": "Brief explanation of the classification"},
        },
        "required": ["is_historic", "confidence", "reason"],
        "additionalProperties": False,
    },
}

_FACTOR_SCHEMA = {"type": "integer", "minimum": 1, "maximum": 5}

RATING_RESPONSE_FORMAT: Dict[str, Any] = {
    "name": "quality_rating_schema",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "rating": _FACTOR_SCHEMA,
            "factors": {
                "type": "object",
                "additionalProperties": False,
                "properties": {name: _FACTOR_SCHEMA for name in RATING_FACTORS},
                "required": list(RATING_FACTORS),
            },
        },
        "required": ["rating", "factors"],
    },
}


# Applied locally. Confidence is deliberately untyped here: it is clamped, not rejected.
CLASSIFICATION_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["is_historic", "reason"],
    "properties": {
        "is_historic": {"type": "boolean"},
        "reason": {"type": "string"},
    },
    "additionalProperties": True,
}

RATING_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["rating", "factors"],
    "properties": {
        "rating": _FACTOR_SCHEMA,
        "factors": {
            "type": "object",
            "required": list(RATING_FACTORS),
            "properties": {name: _FACTOR_SCHEMA for name in RATING_FACTORS},
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}

_CLASSIFICATION_VALIDATOR = Draft202012Validator(CLASSIFICATION_SCHEMA)
_RATING_VALIDATOR = Draft202012Validator(RATING_SCHEMA)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class ClassificationResult:
    post_id: str
    is_historic: bool
    confidence: int
    reason: str


@dataclass(frozen=True)
class QualityRating:
    post_id: str
    rating: int
    factors: Dict[str, int]


def _collect_errors(validator: Draft202012Validator, payload: Any) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(payload), key=lambda x: list(x.path)):
        path = "/".join(str(p) for p in e.path) or "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


def validate_classification(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    return _collect_errors(_CLASSIFICATION_VALIDATOR, payload)


def validate_rating(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    return _collect_errors(_RATING_VALIDATOR, payload)


def clamp_confidence(value: Any) -> int:
    """Round half up into [0, 100]; anything non-numeric (bools included) or NaN becomes 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if math.isnan(value):
        return 0
    if value < 0:
        return 0
    if value > 100:
        return 100
    return int(math.floor(value + 0.5))


def parse_json_content(content: Optional[str]) -> Any:
    if content is None or not str(content).strip():
        raise ResponseParseError("Empty response from AI service")
    try:
        return json.loads(content)
    except ValueError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}") from e


def parse_classification(post_id: str, data: Any) -> ClassificationResult:
    errors = validate_classification(data)
    if errors:
        raise ResponseValidationError("Invalid classification response", errors)
    return ClassificationResult(
        post_id=post_id,
        is_historic=data["is_historic"],
        confidence=clamp_confidence(data.get("confidence")),
        reason=data["reason"],
    )


def parse_rating(post_id: str, data: Any) -> QualityRating:
    errors = validate_rating(data)
    if errors:
        raise ResponseValidationError("Invalid rating response", errors)
    return QualityRating(
        post_id=post_id,
        rating=int(data["rating"]),
        factors={name: int(data["factors"][name]) for name in RATING_FACTORS},
    )


def sanitize_for_prompt(text: Optional[str], *, max_chars: int = MAX_PROMPT_CHARS) -> str:
    """Drop control characters and bound the length of user content sent to the model."""
    if not text:
        return ""
    cleaned = _CONTROL_CHARS.sub("", str(text)).strip()
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars].rstrip() + "…"
    return cleaned


def normalize_message_content(content: Union[None, str, Iterable[Any]]) -> str:
    """Flatten SDK message content (a string or a list of typed parts) to text."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    for part in content:
        kind = part.get("type") if isinstance(part, dict) else getattr(part, "type", None)
        if kind == "text":
            text = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
            return text or ""
    return ""
