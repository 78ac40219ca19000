"""
Filter Expressions

Query filters are plain strings in a small grammar shared by every transport:

    filter      = or_expr
    or_expr     = and_expr { "or" and_expr }
    and_expr    = primary { "and" primary }
    primary     = "(" or_expr ")" | comparison
    comparison  = PROPERTY ( "eq" | "ge" | "le" ) LITERAL
    LITERAL     = "'" { any character, "''" for a quote } "'"

Keywords are case-insensitive. Values are compared as text.

Example:
    >>> node = parse_filter("PartitionKey eq 'Root' and RowKey ge 'Id::'")
    >>> node.evaluate({'PartitionKey': 'Root', 'RowKey': 'Id::42'})
    True

The builders (eq, ge, le, and_, or_, prefix_range, key_filter, keys_filter)
produce correctly quoted strings, so callers never concatenate raw values.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import Attr, ConditionBase, Key

from ..exceptions import ValidationError
from .table_service import PARTITION_KEY, ROW_KEY

OPERATORS = ("eq", "ge", "le")

# Upper bound for prefix ranges: the highest code point sorts after any suffix
PREFIX_RANGE_END = chr(0x10FFFF)

_TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<lparen>\()|(?P<rparen>\))|(?P<literal>'(?:[^']|'')*')|(?P<word>[A-Za-z_][A-Za-z0-9_]*))"
)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class Comparison:
    """A single ``Property op 'literal'`` clause."""

    property: str
    operator: str
    value: str

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        actual = values.get(self.property)
        if actual is None:
            return False
        actual = _as_text(actual)
        if self.operator == "eq":
            return actual == self.value
        if self.operator == "ge":
            return actual >= self.value
        return actual <= self.value

    def to_condition(self) -> ConditionBase:
        attr = Attr(self.property)
        if self.operator == "eq":
            return attr.eq(self.value)
        if self.operator == "ge":
            return attr.gte(self.value)
        return attr.lte(self.value)

    def properties(self) -> List[str]:
        return [self.property]

    def __str__(self) -> str:
        return f"{self.property} {self.operator} {quote(self.value)}"


@dataclass(frozen=True)
class And:
    clauses: Tuple[Any, ...]

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        return all(clause.evaluate(values) for clause in self.clauses)

    def to_condition(self) -> ConditionBase:
        condition = self.clauses[0].to_condition()
        for clause in self.clauses[1:]:
            condition = condition & clause.to_condition()
        return condition

    def properties(self) -> List[str]:
        return [name for clause in self.clauses for name in clause.properties()]

    def __str__(self) -> str:
        return " and ".join(f"({clause})" for clause in self.clauses)


@dataclass(frozen=True)
class Or:
    clauses: Tuple[Any, ...]

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        return any(clause.evaluate(values) for clause in self.clauses)

    def to_condition(self) -> ConditionBase:
        condition = self.clauses[0].to_condition()
        for clause in self.clauses[1:]:
            condition = condition | clause.to_condition()
        return condition

    def properties(self) -> List[str]:
        return [name for clause in self.clauses for name in clause.properties()]

    def __str__(self) -> str:
        return " or ".join(f"({clause})" for clause in self.clauses)


# =============================================================================
# Parser
# =============================================================================

def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    while position < len(text):
        if text[position:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(text, position)
        if match is None:
            raise ValidationError(f"Invalid filter expression at position {position}: {text!r}")
        kind = match.lastgroup
        raw = match.group(kind)
        if kind == "literal":
            tokens.append(("literal", raw[1:-1].replace("''", "'")))
        elif kind == "word":
            lowered = raw.lower()
            if lowered in OPERATORS or lowered in ("and", "or"):
                tokens.append((lowered, raw))
            else:
                tokens.append(("property", raw))
        else:
            tokens.append((kind, raw))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    def _peek(self) -> Optional[str]:
        if self.index < len(self.tokens):
            return self.tokens[self.index][0]
        return None

    def _take(self, *kinds: str) -> Tuple[str, str]:
        kind = self._peek()
        if kind not in kinds:
            found = kind or "end of expression"
            raise ValidationError(f"Invalid filter expression {self.text!r}: expected {' or '.join(kinds)}, found {found}")
        token = self.tokens[self.index]
        self.index += 1
        return token

    def parse(self):
        if not self.tokens:
            raise ValidationError("Filter expression is empty")
        node = self._or()
        if self._peek() is not None:
            raise ValidationError(f"Invalid filter expression {self.text!r}: unexpected {self.tokens[self.index][1]!r}")
        return node

    def _or(self):
        clauses = [self._and()]
        while self._peek() == "or":
            self._take("or")
            clauses.append(self._and())
        return clauses[0] if len(clauses) == 1 else Or(tuple(clauses))

    def _and(self):
        clauses = [self._primary()]
        while self._peek() == "and":
            self._take("and")
            clauses.append(self._primary())
        return clauses[0] if len(clauses) == 1 else And(tuple(clauses))

    def _primary(self):
        if self._peek() == "lparen":
            self._take("lparen")
            node = self._or()
            self._take("rparen")
            return node
        _, name = self._take("property")
        operator, _ = self._take(*OPERATORS)
        _, value = self._take("literal")
        return Comparison(name, operator, value)


def parse_filter(text: str):
    """Parse a filter string into an AST node.

    Raises:
        ValidationError: If the expression is malformed
    """
    return _Parser(text).parse()


# =============================================================================
# Builders
# =============================================================================

def quote(value: Any) -> str:
    return "'" + _as_text(value).replace("'", "''") + "'"


def eq(property_name: str, value: Any) -> str:
    return f"{property_name} eq {quote(value)}"


def ge(property_name: str, value: Any) -> str:
    return f"{property_name} ge {quote(value)}"


def le(property_name: str, value: Any) -> str:
    return f"{property_name} le {quote(value)}"


def and_(*clauses: str) -> str:
    clauses = [clause for clause in clauses if clause]
    if len(clauses) == 1:
        return clauses[0]
    return " and ".join(f"({clause})" for clause in clauses)


def or_(*clauses: str) -> str:
    clauses = [clause for clause in clauses if clause]
    if len(clauses) == 1:
        return clauses[0]
    return " or ".join(f"({clause})" for clause in clauses)


def prefix_range(property_name: str, prefix: str) -> str:
    """Match every value of ``property_name`` that starts with ``prefix``."""
    return and_(ge(property_name, prefix), le(property_name, prefix + PREFIX_RANGE_END))


def key_filter(partition_key: str, row_key: str) -> str:
    return and_(eq(PARTITION_KEY, partition_key), eq(ROW_KEY, row_key))


def keys_filter(keys: Iterable[Tuple[str, str]]) -> str:
    return or_(*(key_filter(partition_key, row_key) for partition_key, row_key in keys))


# =============================================================================
# Query planning helpers
# =============================================================================

def exact_keys(node) -> Optional[List[Tuple[str, str]]]:
    """Return the keys of a filter that only selects exact rows, else None.

    Recognises ``PartitionKey eq 'p' and RowKey eq 'r'`` and disjunctions of it.
    """
    clauses = node.clauses if isinstance(node, Or) else (node,)
    keys = []
    for clause in clauses:
        if not isinstance(clause, And) or len(clause.clauses) != 2:
            return None
        values = {}
        for part in clause.clauses:
            if not isinstance(part, Comparison) or part.operator != "eq":
                return None
            values[part.property] = part.value
        if set(values) != {PARTITION_KEY, ROW_KEY}:
            return None
        keys.append((values[PARTITION_KEY], values[ROW_KEY]))
    return keys


def split_key_condition(node) -> Optional[Tuple[ConditionBase, Optional[ConditionBase]]]:
    """Split a filter into a DynamoDB key condition and a remaining filter.

    Only applies when the top level pins ``PartitionKey eq``; RowKey clauses
    become part of the key condition. Returns None when the filter cannot be
    served by a key query.
    """
    clauses = node.clauses if isinstance(node, And) else (node,)
    partition = [c for c in clauses if isinstance(c, Comparison) and c.property == PARTITION_KEY and c.operator == "eq"]
    if len(partition) != 1:
        return None
    row_clauses = [c for c in clauses if isinstance(c, Comparison) and c.property == ROW_KEY]
    rest = [c for c in clauses if c is not partition[0] and c not in row_clauses]
    if any(name in (PARTITION_KEY, ROW_KEY) for clause in rest for name in clause.properties()):
        return None

    key_condition = Key(PARTITION_KEY).eq(partition[0].value)
    operators = {c.operator: c.value for c in row_clauses}
    if len(row_clauses) != len(operators):
        return None
    if set(operators) == {"ge", "le"}:
        key_condition = key_condition & Key(ROW_KEY).between(operators["ge"], operators["le"])
    elif len(operators) == 1:
        operator, value = next(iter(operators.items()))
        row_key = Key(ROW_KEY)
        key_condition = key_condition & {"eq": row_key.eq, "ge": row_key.gte, "le": row_key.lte}[operator](value)
    elif operators:
        return None

    remaining = None
    if rest:
        remaining = (rest[0] if len(rest) == 1 else And(tuple(rest))).to_condition()
    return key_condition, remaining
