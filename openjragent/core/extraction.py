# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Strict decoding of structured model responses.

Model output is free text that usually contains a JSON object, sometimes in
a markdown fence, sometimes surrounded by prose. Decoding never raises:
callers receive either ``Decoded`` or ``DecodeFailure`` and choose their own
safe default.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError


T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


@dataclass(frozen=True)
class Decoded(Generic[T]):
    """Successfully decoded value."""

    value: T


@dataclass(frozen=True)
class DecodeFailure:
    """Decoding failed.

    Attributes:
        error: Why decoding failed.
        raw: The original content.
    """

    error: str
    raw: str


def _candidates(content: str) -> list[str]:
    text = content.strip()
    candidates = [text]
    candidates.extend(m.group(1).strip() for m in _FENCE_RE.finditer(text))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])
    return candidates


def decode_json(content: str | None) -> Decoded[dict[str, Any]] | DecodeFailure:
    """Decode the first JSON object found in a model response.

    Tries the raw content, then each fenced code block, then the outermost
    brace-delimited span.

    Args:
        content: Raw model output.

    Returns:
        ``Decoded`` holding the object, or ``DecodeFailure``.
    """
    if not content or not content.strip():
        return DecodeFailure(error="empty response", raw=content or "")

    last_error = "no JSON object found"
    for candidate in _candidates(content):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = str(e)
            continue
        if isinstance(data, dict):
            return Decoded(data)
        last_error = f"expected a JSON object, got {type(data).__name__}"
    return DecodeFailure(error=last_error, raw=content)


def decode_model(content: str | None, schema: type[ModelT]) -> Decoded[ModelT] | DecodeFailure:
    """Decode a model response and validate it against a pydantic schema.

    Args:
        content: Raw model output.
        schema: Pydantic model describing the expected structure.

    Returns:
        ``Decoded`` holding the validated instance, or ``DecodeFailure``.
    """
    decoded = decode_json(content)
    if isinstance(decoded, DecodeFailure):
        return decoded
    try:
        return Decoded(schema.model_validate(decoded.value))
    except ValidationError as e:
        return DecodeFailure(error=f"schema validation failed: {e}", raw=content or "")
