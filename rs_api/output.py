"""Rendering of API responses and extracted values for stdout."""

from __future__ import annotations

import enum
import json
from typing import Any

from .errors import ExtractionError, SerializationError
from .response import Response
from .selector import Selector


class ExtractMode(enum.Enum):
    """How values selected from a response are printed."""
    SINGLE = "x1"  # exactly one value, on one line
    LINES = "xm"  # one JSON value per line
    ARRAY = "xj"  # all values as one JSON array
    HEADER = "xh"  # a response header


def to_json(value: Any, pretty: bool = False) -> str:
    """Compact (or 2-space indented) JSON text."""
    try:
        if pretty:
            return json.dumps(value, indent=2, ensure_ascii=False)
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Error printing selected value: {e}") from e


def render_body(response: Response, pretty: bool = False) -> str:
    """The response JSON as text; an empty body renders as nothing."""
    if response.data is None:
        return ""
    return to_json(response.data, pretty=pretty)


def render_scalar(value: Any) -> str:
    """One value for single-value output: strings unquoted, the rest as JSON."""
    if isinstance(value, str):
        return value
    return to_json(value)


def extract_single(values: list[Any]) -> str:
    if not values:
        raise ExtractionError("No value could be selected")
    if len(values) > 1:
        raise ExtractionError(f"Multiple values selected ({len(values)} matches)")
    return render_scalar(values[0])


def extract_lines(values: list[Any]) -> str:
    return "".join(to_json(v) + "\n" for v in values)


def extract_array(values: list[Any]) -> str:
    return to_json(values)


def render(
    response: Response,
    mode: ExtractMode | None = None,
    expression: str | None = None,
    pretty: bool = False,
) -> str:
    """
    Produce stdout text for a response.

    Args:
        response: Successful API response
        mode: Extraction mode, None prints the whole body
        expression: Selector expression, or header name for ExtractMode.HEADER
        pretty: Indent the whole-body JSON

    Raises:
        ExtractionError: Invalid selector or wrong number of single values
        SerializationError: A value could not be encoded
    """
    if mode is None:
        return render_body(response, pretty=pretty)

    if mode is ExtractMode.HEADER:
        return response.headers.get(expression, "")

    values = Selector.compile(expression).select(response.data)
    if mode is ExtractMode.SINGLE:
        return extract_single(values)
    if mode is ExtractMode.ARRAY:
        return extract_array(values)
    return extract_lines(values)
