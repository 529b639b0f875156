# expressions.py
"""
A small, pure expression language for job and step conditions.

    always()
    needs.build.result == 'success'
    contains(needs.*.result, 'failure')
    success() && matrix.python-version != '3.9'

Expressions are parsed once, at graph construction, and evaluated against an
EvaluationContext. Evaluation never mutates the context; names that are not in
the context raise UnresolvedReference so a broken condition fails its job
instead of quietly skipping it.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, NamedTuple, Optional, Sequence

from .errors import InvalidExpression, UnresolvedReference


STATUS_FUNCTIONS = frozenset({"always", "success", "failure", "cancelled"})


@dataclass(frozen=True)
class EvaluationContext:
    """Read-only inputs to an expression."""
    values: Mapping[str, Any] = field(default_factory=dict)
    success: bool = True
    failure: bool = False
    cancelled: bool = False


# ---------------------------------------------------------------------
# Value semantics
# ---------------------------------------------------------------------

def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def to_string(value: Any) -> str:
    if value is None:
        return ""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Mapping):
        return json.dumps(dict(value), default=str)
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value), default=str)
    return str(value)


def _scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def loose_equals(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.casefold() == b.casefold()
    if _scalar(a) and _scalar(b) and type(a) is not type(b):
        x, y = to_number(a), to_number(b)
        return not (math.isnan(x) or math.isnan(y)) and x == y
    return a == b


def _order(a: Any, b: Any) -> Optional[int]:
    if isinstance(a, str) and isinstance(b, str):
        x, y = a.casefold(), b.casefold()
    else:
        x, y = to_number(a), to_number(b)
        if math.isnan(x) or math.isnan(y):
            return None
    return (x > y) - (x < y)


# ---------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------

class Token(NamedTuple):
    kind: str     # string | number | ident | op | end
    value: str
    pos: int


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>'(?:[^']|'')*')
    | (?P<number>-?\d+(?:\.\d+)?)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*)
    | (?P<op>==|!=|<=|>=|&&|\|\||[<>!()\[\].,*])
    """,
    re.VERBOSE,
)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if not m:
            raise InvalidExpression(source, f"unexpected character {source[pos]!r}", pos)
        kind = m.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    tokens.append(Token("end", "", len(source)))
    return tokens


# ---------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------

class Node:
    def evaluate(self, ctx: EvaluationContext) -> Any:
        raise NotImplementedError

    def children(self) -> Sequence["Node"]:
        return ()


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, ctx):
        return self.value


@dataclass(frozen=True)
class Name(Node):
    name: str

    def evaluate(self, ctx):
        if self.name not in ctx.values:
            raise UnresolvedReference(self.name, sorted(ctx.values))
        return ctx.values[self.name]

    @property
    def path(self) -> str:
        return self.name


@dataclass(frozen=True)
class Member(Node):
    target: Node
    name: str

    @property
    def path(self) -> str:
        return f"{getattr(self.target, 'path', '?')}.{self.name}"

    def evaluate(self, ctx):
        obj = self.target.evaluate(ctx)
        if isinstance(obj, Mapping):
            if self.name not in obj:
                raise UnresolvedReference(self.path, sorted(str(k) for k in obj))
            return obj[self.name]
        if isinstance(obj, list):
            # filtered projection after `*`
            return [item[self.name] for item in obj if isinstance(item, Mapping) and self.name in item]
        raise UnresolvedReference(self.path)

    def children(self):
        return (self.target,)


@dataclass(frozen=True)
class Star(Node):
    target: Node

    @property
    def path(self) -> str:
        return f"{getattr(self.target, 'path', '?')}.*"

    def evaluate(self, ctx):
        obj = self.target.evaluate(ctx)
        if isinstance(obj, Mapping):
            return list(obj.values())
        if isinstance(obj, list):
            return list(obj)
        raise UnresolvedReference(self.path)

    def children(self):
        return (self.target,)


@dataclass(frozen=True)
class Index(Node):
    target: Node
    key: Node

    @property
    def path(self) -> str:
        return f"{getattr(self.target, 'path', '?')}[...]"

    def evaluate(self, ctx):
        obj = self.target.evaluate(ctx)
        key = self.key.evaluate(ctx)
        if isinstance(obj, Mapping):
            k = to_string(key)
            if k not in obj:
                raise UnresolvedReference(f"{getattr(self.target, 'path', '?')}[{k!r}]")
            return obj[k]
        if isinstance(obj, list):
            i = to_number(key)
            if math.isnan(i) or not i.is_integer() or not 0 <= int(i) < len(obj):
                raise UnresolvedReference(f"{getattr(self.target, 'path', '?')}[{to_string(key)}]")
            return obj[int(i)]
        raise UnresolvedReference(self.path)

    def children(self):
        return (self.target, self.key)


@dataclass(frozen=True)
class Not(Node):
    operand: Node

    def evaluate(self, ctx):
        return not truthy(self.operand.evaluate(ctx))

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class And(Node):
    left: Node
    right: Node

    def evaluate(self, ctx):
        left = self.left.evaluate(ctx)
        if not truthy(left):
            return left
        return self.right.evaluate(ctx)

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Or(Node):
    left: Node
    right: Node

    def evaluate(self, ctx):
        left = self.left.evaluate(ctx)
        if truthy(left):
            return left
        return self.right.evaluate(ctx)

    def children(self):
        return (self.left, self.right)


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": loose_equals,
    "!=": lambda a, b: not loose_equals(a, b),
    "<": lambda a, b: _order(a, b) == -1,
    "<=": lambda a, b: _order(a, b) in (-1, 0),
    ">": lambda a, b: _order(a, b) == 1,
    ">=": lambda a, b: _order(a, b) in (0, 1),
}


@dataclass(frozen=True)
class Compare(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, ctx):
        return _COMPARATORS[self.op](self.left.evaluate(ctx), self.right.evaluate(ctx))

    def children(self):
        return (self.left, self.right)


# ---------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------

def _contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, (list, tuple)):
        return any(loose_equals(item, needle) for item in haystack)
    return to_string(needle).casefold() in to_string(haystack).casefold()


def _format(fmt: Any, *args: Any) -> str:
    def repl(m: re.Match) -> str:
        if m.group(0) == "{{":
            return "{"
        if m.group(0) == "}}":
            return "}"
        i = int(m.group(1))
        if i >= len(args):
            raise UnresolvedReference(f"format argument {{{i}}}")
        return to_string(args[i])

    return re.sub(r"\{\{|\}\}|\{(\d+)\}", repl, to_string(fmt))


def _join(items: Any, sep: Any = ",") -> str:
    if isinstance(items, (list, tuple)):
        return to_string(sep).join(to_string(i) for i in items)
    return to_string(items)


# name -> (min args, max args, implementation)
FUNCTIONS: Dict[str, tuple] = {
    "contains": (2, 2, _contains),
    "startsWith": (2, 2, lambda a, b: to_string(a).casefold().startswith(to_string(b).casefold())),
    "endsWith": (2, 2, lambda a, b: to_string(a).casefold().endswith(to_string(b).casefold())),
    "format": (1, 32, _format),
    "join": (1, 2, _join),
}


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: tuple

    def evaluate(self, ctx):
        if self.name == "always":
            return True
        if self.name == "success":
            return ctx.success
        if self.name == "failure":
            return ctx.failure
        if self.name == "cancelled":
            return ctx.cancelled
        _lo, _hi, fn = FUNCTIONS[self.name]
        return fn(*(a.evaluate(ctx) for a in self.args))

    def children(self):
        return self.args


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------

class _Parser:
    """
    Recursive descent, lowest precedence first:

        or      := and ('||' and)*
        and     := unary ('&&' unary)*
        unary   := '!' unary | compare
        compare := postfix (CMP postfix)?
        postfix := primary ('.' IDENT | '.' '*' | '[' or ']')*
        primary := literal | '(' or ')' | IDENT '(' args ')' | IDENT
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.i = 0

    def _peek(self) -> Token:
        return self.tokens[self.i]

    def _next(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _error(self, reason: str, tok: Optional[Token] = None) -> InvalidExpression:
        tok = tok or self._peek()
        return InvalidExpression(self.source, reason, tok.pos)

    def _expect(self, value: str) -> Token:
        tok = self._next()
        if tok.kind != "op" or tok.value != value:
            raise self._error(f"expected {value!r}, got {tok.value or 'end of input'!r}", tok)
        return tok

    def _at(self, value: str) -> bool:
        tok = self._peek()
        return tok.kind == "op" and tok.value == value

    def parse(self) -> Node:
        if self._peek().kind == "end":
            raise self._error("empty expression")
        node = self._or()
        if self._peek().kind != "end":
            raise self._error(f"unexpected {self._peek().value!r}")
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._at("||"):
            self._next()
            node = Or(node, self._and())
        return node

    def _and(self) -> Node:
        node = self._unary()
        while self._at("&&"):
            self._next()
            node = And(node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._at("!"):
            self._next()
            return Not(self._unary())
        return self._compare()

    def _compare(self) -> Node:
        node = self._postfix()
        tok = self._peek()
        if tok.kind == "op" and tok.value in _COMPARATORS:
            self._next()
            node = Compare(tok.value, node, self._postfix())
        return node

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            if self._at("."):
                self._next()
                tok = self._next()
                if tok.kind == "op" and tok.value == "*":
                    node = Star(node)
                elif tok.kind == "ident":
                    node = Member(node, tok.value)
                else:
                    raise self._error("expected property name after '.'", tok)
            elif self._at("["):
                self._next()
                key = self._or()
                self._expect("]")
                node = Index(node, key)
            else:
                return node

    def _primary(self) -> Node:
        tok = self._next()
        if tok.kind == "string":
            return Literal(tok.value[1:-1].replace("''", "'"))
        if tok.kind == "number":
            num = float(tok.value)
            return Literal(int(num) if num.is_integer() and "." not in tok.value else num)
        if tok.kind == "op" and tok.value == "(":
            node = self._or()
            self._expect(")")
            return node
        if tok.kind == "ident":
            if tok.value == "true":
                return Literal(True)
            if tok.value == "false":
                return Literal(False)
            if tok.value == "null":
                return Literal(None)
            if self._at("("):
                return self._call(tok)
            return Name(tok.value)
        raise self._error(f"unexpected {tok.value or 'end of input'!r}", tok)

    def _call(self, name: Token) -> Node:
        self._expect("(")
        args: List[Node] = []
        if not self._at(")"):
            args.append(self._or())
            while self._at(","):
                self._next()
                args.append(self._or())
        self._expect(")")

        if name.value in STATUS_FUNCTIONS:
            lo = hi = 0
        elif name.value in FUNCTIONS:
            lo, hi, _fn = FUNCTIONS[name.value]
        else:
            raise self._error(f"unknown function {name.value!r}", name)
        if not lo <= len(args) <= hi:
            raise self._error(f"{name.value}() takes {lo}..{hi} arguments, got {len(args)}", name)
        return Call(name.value, tuple(args))


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def _walk(node: Node):
    yield node
    for child in node.children():
        yield from _walk(child)


def _is_path(node: Node) -> bool:
    while isinstance(node, Member):
        node = node.target
    return isinstance(node, Name)


def _paths(node: Node):
    # outermost name.member.member chains only
    if _is_path(node):
        yield node
        return
    for child in node.children():
        yield from _paths(child)


@dataclass(frozen=True)
class Expression:
    source: str
    root: Node

    @property
    def status_functions(self) -> FrozenSet[str]:
        return frozenset(
            n.name for n in _walk(self.root) if isinstance(n, Call) and n.name in STATUS_FUNCTIONS
        )

    @property
    def references(self) -> tuple:
        """Every plain `name.member...` path, whether or not evaluation reaches it."""
        return tuple(dict.fromkeys(n.path for n in _paths(self.root)))

    def resolve(self, ctx: EvaluationContext) -> None:
        """Raise UnresolvedReference for any plain path the context cannot satisfy."""
        for node in _paths(self.root):
            node.evaluate(ctx)

    def evaluate(self, ctx: EvaluationContext) -> Any:
        return self.root.evaluate(ctx)

    def test(self, ctx: EvaluationContext) -> bool:
        return truthy(self.evaluate(ctx))

    def __str__(self) -> str:
        return self.source


def strip_delimiters(text: str) -> str:
    """`${{ always() }}` -> `always()`; bare expressions pass through."""
    text = text.strip()
    if text.startswith("${{") and text.endswith("}}"):
        return text[3:-2].strip()
    return text


@lru_cache(maxsize=512)
def parse(text: str) -> Expression:
    source = strip_delimiters(text)
    return Expression(source, _Parser(source).parse())


_INTERPOLATION_RE = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)


def embedded(text: str) -> List[Expression]:
    """Parse every `${{ expr }}` fragment in text, in order."""
    return [parse(fragment) for fragment in _INTERPOLATION_RE.findall(text)]


def interpolate(text: str, ctx: EvaluationContext) -> str:
    """Replace every `${{ expr }}` in text with the expression's string value."""
    if "${{" not in text:
        return text
    return _INTERPOLATION_RE.sub(lambda m: to_string(parse(m.group(1)).evaluate(ctx)), text)
