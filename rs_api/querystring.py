"""Query-string construction for API arguments."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Union
from urllib.parse import quote_plus

from .errors import UsageError

QueryArgs = Mapping[str, Union[str, list[str]]]

# name=value, where name may carry brackets: server[instance][href]=...
_ARGUMENT = re.compile(r"([a-zA-Z0-9_\[\]]+)=(.*)", re.DOTALL)


def encode(args: QueryArgs) -> str:
    """
    Build a query string from a mapping of keys to strings or lists of strings.

    Both keys and values are percent-encoded. A list value repeats its key once
    per element, e.g. ``{"filter[]": ["a", "b"]}`` -> ``filter%5B%5D=a&filter%5B%5D=b``.

    Raises:
        TypeError: If a value is neither a string nor a list of strings
    """
    clauses = []
    for key, value in args.items():
        if isinstance(value, str):
            clauses.append(f"{quote_plus(key)}={quote_plus(value)}")
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            for item in value:
                clauses.append(f"{quote_plus(key)}={quote_plus(item)}")
        else:
            raise TypeError(f"Cannot make query string from {value!r} (key {key!r})")
    return "&".join(clauses)


def parse_arguments(arguments: Iterable[str]) -> dict[str, str | list[str]]:
    """
    Turn raw ``name=value`` command line parameters into query arguments.

    Repeated names collect into a list, preserving order.
    """
    args: dict[str, str | list[str]] = {}
    for argument in arguments:
        m = _ARGUMENT.fullmatch(argument)
        if m is None:
            raise UsageError(f"argument '{argument}' is not valid")
        name, value = m.group(1), m.group(2)
        if name not in args:
            args[name] = value
        elif isinstance(args[name], list):
            args[name].append(value)
        else:
            args[name] = [args[name], value]
    return args
