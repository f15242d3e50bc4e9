"""Typed decode-and-validate for wire payloads.

Everything here runs before any proving stage so malformed input fails
fast and cheaply.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from .errors import DecodingError, ShapeMismatch
from .models import InferencePayload, TargetPayload


def _summarize(err: ValidationError) -> str:
    parts = []
    for e in err.errors()[:5]:
        loc = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{loc or '<root>'}: {e.get('msg', 'invalid')}")
    return "; ".join(parts)


def decode_identity(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DecodingError("identity must be a non-empty string")
    return value


def decode_input(value: Any, *, require_output: bool = True) -> InferencePayload:
    """Decode an EZKL-style input document.

    ``output_data`` holds the claimed output and is mandatory unless the
    caller only wants a forward pass.
    """
    if not isinstance(value, dict):
        raise DecodingError(f"input_data must be a JSON object, got {type(value).__name__}")
    try:
        payload = InferencePayload.model_validate(value)
    except ValidationError as e:
        raise DecodingError(f"invalid input_data: {_summarize(e)}") from e
    if require_output and payload.output_data is None:
        raise DecodingError("invalid input_data: output_data is required")
    return payload


def decode_target(value: Any) -> TargetPayload:
    """Decode a target document; a bare 2-D list is taken as the rows."""
    if isinstance(value, list):
        value = {"target_output_data": value}
    if not isinstance(value, dict):
        raise DecodingError(
            f"target_output_data must be a JSON object, got {type(value).__name__}"
        )
    try:
        return TargetPayload.model_validate(value)
    except ValidationError as e:
        raise DecodingError(f"invalid target_output_data: {_summarize(e)}") from e


def decode_claim(input_value: Any, target_value: Any) -> tuple[InferencePayload, list[float], list[float]]:
    """Decode input + target and check the compared rows line up.

    Returns:
        (payload, claimed_output, target_output)
    """
    payload = decode_input(input_value, require_output=True)
    target = decode_target(target_value)
    claimed = payload.output_data[0]
    if len(claimed) != len(target.target_output):
        raise ShapeMismatch(len(claimed), len(target.target_output))
    return payload, claimed, target.target_output


__all__ = ["decode_claim", "decode_identity", "decode_input", "decode_target"]
