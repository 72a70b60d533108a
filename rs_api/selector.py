"""JSON:select style selectors over decoded JSON documents.

Supported syntax (see http://jsonselect.org/):

    *  object  array  string  number  boolean  null     type matchers
    .name  ."quoted name"                               member key
    :root  :first-child  :last-child  :only-child  :empty
    :nth-child(an+b)  :nth-last-child(an+b)
    :has(selector)  :val(literal)  :contains("text")
    A B   A > B   A ~ B   A, B                           combinators

A key following ``:has(...)`` selects that member of the matched node, so
``*:has(.rel:val("self")).href`` yields the href of the link whose rel is
"self".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from .errors import ExtractionError

_WS = re.compile(r"\s*")
_TYPE = re.compile(r"(object|array|string|number|boolean|null)(?![\w-])")
_IDENT = re.compile(r"(?:[A-Za-z_]|[^\x00-\x7f])(?:[\w-]|[^\x00-\x7f])*")
_STRING = re.compile(r'"(?:[^"\\]|\\.)*"')
_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_KEYWORD = re.compile(r"(true|false|null)(?![\w-])")
_PSEUDO = re.compile(r":([a-z][a-z-]*)")
_NTH = re.compile(
    r"\s*(?:(?P<odd>odd)|(?P<even>even)"
    r"|(?P<a>[+-]?\d*)n\s*(?:(?P<sign>[+-])\s*(?P<b>\d+))?"
    r"|(?P<index>[+-]?\d+))\s*"
)


class SelectorSyntaxError(ExtractionError):
    """The selector expression could not be parsed."""

    def __init__(self, message: str, expression: str, position: int):
        super().__init__(f"{message} at position {position} in selector '{expression}'")
        self.expression = expression
        self.position = position


def json_type(value: Any) -> str:
    """JSON type name of a decoded value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise ExtractionError(f"Not a JSON value: {value!r}")


@dataclass(eq=False)
class _Node:
    value: Any
    parent: _Node | None = None
    key: str | None = None
    index: int | None = None  # 1-based, array elements only
    _children: list[_Node] | None = field(default=None, repr=False)

    def children(self) -> list[_Node]:
        if self._children is None:
            if isinstance(self.value, dict):
                self._children = [_Node(v, self, key=k) for k, v in self.value.items()]
            elif isinstance(self.value, list):
                self._children = [_Node(v, self, index=i) for i, v in enumerate(self.value, 1)]
            else:
                self._children = []
        return self._children

    def descendants(self) -> Iterator[_Node]:
        for child in self.children():
            yield child
            yield from child.descendants()

    def walk(self) -> Iterator[_Node]:
        yield self
        yield from self.descendants()

    def siblings(self) -> list[_Node]:
        if self.parent is None:
            return []
        return [n for n in self.parent.children() if n is not self]

    @property
    def array_size(self) -> int | None:
        if self.index is None:
            return None
        return len(self.parent.value)


Predicate = Callable[[_Node], bool]


@dataclass
class _Compound:
    type: str | None = None
    keys: list[str] = field(default_factory=list)
    predicates: list[Predicate] = field(default_factory=list)
    has_has: bool = False

    def matches(self, node: _Node) -> bool:
        if self.type is not None and json_type(node.value) != self.type:
            return False
        if any(node.key != key for key in self.keys):
            return False
        return all(p(node) for p in self.predicates)


# (combinator, compound); combinator is None for the first step
_Step = tuple["str | None", _Compound]
_Selector = list[_Step]


def _nth(a: int, b: int) -> Callable[[int], bool]:
    def check(i: int) -> bool:
        if a == 0:
            return i == b
        n, rem = divmod(i - b, a)
        return rem == 0 and n >= 0
    return check


def _same_json(value: Any, literal: Any) -> bool:
    return json_type(value) == json_type(literal) and value == literal


class _Parser:
    def __init__(self, expression: str):
        self.text = expression
        self.pos = 0

    def error(self, message: str) -> SelectorSyntaxError:
        return SelectorSyntaxError(message, self.text, self.pos)

    def skip_ws(self) -> bool:
        m = _WS.match(self.text, self.pos)
        self.pos = m.end()
        return m.end() > m.start()

    def peek(self, chars: str) -> bool:
        return self.pos < len(self.text) and self.text[self.pos] in chars

    def expect(self, char: str) -> None:
        if not self.peek(char):
            raise self.error(f"expected '{char}'")
        self.pos += 1

    def match(self, pattern: re.Pattern) -> re.Match | None:
        m = pattern.match(self.text, self.pos)
        if m is not None:
            self.pos = m.end()
        return m

    def parse(self) -> list[_Selector]:
        group = self.parse_group(nested=False)
        if self.pos != len(self.text):
            raise self.error(f"unexpected '{self.text[self.pos]}'")
        return group

    def parse_group(self, nested: bool) -> list[_Selector]:
        group = [self.parse_selector(nested)]
        while self.peek(","):
            self.pos += 1
            group.append(self.parse_selector(nested))
        return group

    def parse_selector(self, nested: bool) -> _Selector:
        steps: _Selector = []
        self.skip_ws()
        combinator = None
        if nested and self.peek(">~"):
            combinator = self.text[self.pos]
            self.pos += 1
            self.skip_ws()

        while True:
            steps.extend(self.parse_compound(combinator))
            had_ws = self.skip_ws()
            if self.pos >= len(self.text) or self.peek(",)"):
                return steps
            if self.peek(">~"):
                combinator = self.text[self.pos]
                self.pos += 1
                self.skip_ws()
            elif had_ws:
                combinator = " "
            else:
                raise self.error(f"unexpected '{self.text[self.pos]}'")

    def parse_compound(self, combinator: str | None) -> list[_Step]:
        compound = _Compound()
        steps: list[_Step] = [(combinator, compound)]
        start = self.pos

        if self.peek("*"):
            self.pos += 1
        elif m := self.match(_TYPE):
            compound.type = m.group(1)

        while True:
            if self.peek("."):
                self.pos += 1
                key = self.parse_key()
                if compound.has_has:
                    compound = _Compound()
                    steps.append((">", compound))
                compound.keys.append(key)
            elif self.peek(":"):
                self.parse_pseudo(compound)
            else:
                break

        if self.pos == start:
            if self.pos >= len(self.text):
                raise self.error("unexpected end of selector")
            raise self.error(f"unexpected '{self.text[self.pos]}'")
        return steps

    def parse_key(self) -> str:
        if m := self.match(_IDENT):
            return m.group(0)
        if m := self.match(_STRING):
            return json.loads(m.group(0))
        raise self.error("expected a key after '.'")

    def parse_literal(self) -> Any:
        self.skip_ws()
        m = self.match(_STRING) or self.match(_NUMBER) or self.match(_KEYWORD)
        if m is None:
            raise self.error("expected a JSON string or number")
        self.skip_ws()
        return json.loads(m.group(0))

    def parse_nth(self) -> Callable[[int], bool]:
        m = self.match(_NTH)
        if m is None or m.end() == m.start():
            raise self.error("expected an expression like 2n+1, odd or 3")
        if m.group("odd"):
            return _nth(2, 1)
        if m.group("even"):
            return _nth(2, 0)
        if m.group("index") is not None:
            return _nth(0, int(m.group("index")))
        coefficient = m.group("a")
        if coefficient in ("", "+"):
            a = 1
        elif coefficient == "-":
            a = -1
        else:
            a = int(coefficient)
        b = int(m.group("b") or 0)
        if m.group("sign") == "-":
            b = -b
        return _nth(a, b)

    def parse_pseudo(self, compound: _Compound) -> None:
        m = self.match(_PSEUDO)
        if m is None:
            raise self.error("expected a pseudo-class after ':'")
        name = m.group(1)

        if name == "root":
            compound.predicates.append(lambda n: n.parent is None)
        elif name == "first-child":
            compound.predicates.append(lambda n: n.index == 1)
        elif name == "last-child":
            compound.predicates.append(lambda n: n.index is not None and n.index == n.array_size)
        elif name == "only-child":
            compound.predicates.append(lambda n: n.index is not None and n.array_size == 1)
        elif name == "empty":
            compound.predicates.append(
                lambda n: isinstance(n.value, (list, dict)) and not n.value
            )
        elif name in ("nth-child", "nth-last-child"):
            self.expect("(")
            check = self.parse_nth()
            self.expect(")")
            if name == "nth-child":
                compound.predicates.append(lambda n: n.index is not None and check(n.index))
            else:
                compound.predicates.append(
                    lambda n: n.index is not None and check(n.array_size - n.index + 1)
                )
        elif name == "has":
            self.expect("(")
            inner = self.parse_group(nested=True)
            self.skip_ws()
            self.expect(")")
            compound.predicates.append(lambda n: any(_evaluate(s, n, nested=True) for s in inner))
            compound.has_has = True
        elif name == "val":
            self.expect("(")
            literal = self.parse_literal()
            self.expect(")")
            compound.predicates.append(lambda n: _same_json(n.value, literal))
        elif name == "contains":
            self.expect("(")
            literal = self.parse_literal()
            self.expect(")")
            if not isinstance(literal, str):
                raise self.error(":contains() takes a string")
            compound.predicates.append(lambda n: isinstance(n.value, str) and literal in n.value)
        else:
            self.pos = m.start()
            raise self.error(f"unsupported pseudo-class ':{name}'")


def _candidates(node: _Node, combinator: str) -> Iterator[_Node]:
    if combinator == ">":
        return iter(node.children())
    if combinator == "~":
        return iter(node.siblings())
    return node.descendants()


def _evaluate(selector: _Selector, root: _Node, nested: bool = False) -> list[_Node]:
    """Evaluate one selector left to right; nested selectors only see descendants of root."""
    combinator, compound = selector[0]
    if nested:
        start = _candidates(root, combinator or " ")
    else:
        start = root.walk()
    current = [n for n in start if compound.matches(n)]

    for combinator, compound in selector[1:]:
        current = [
            candidate
            for node in current
            for candidate in _candidates(node, combinator)
            if compound.matches(candidate)
        ]
        if not current:
            break
    return current


@dataclass
class Selector:
    """A compiled selector expression."""
    expression: str
    _group: list[_Selector] = field(repr=False)

    @classmethod
    def compile(cls, expression: str) -> Selector:
        if not expression.strip():
            raise SelectorSyntaxError("empty selector", expression, 0)
        return cls(expression, _Parser(expression).parse())

    def select(self, document: Any) -> list[Any]:
        """All matching values in traversal order; duplicates are kept."""
        root = _Node(document)
        return [node.value for selector in self._group for node in _evaluate(selector, root)]


def select(document: Any, expression: str) -> list[Any]:
    """Values in ``document`` matched by the selector ``expression``."""
    return Selector.compile(expression).select(document)
