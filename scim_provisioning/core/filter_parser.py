"""SCIM filter expressions (RFC 7644 Section 3.4.2.2).

Pipeline:
    text -> tokenize() -> parse() -> map_attributes() -> compile_filter() -> Predicate

Supported:
    - Comparison operators: eq, ne, co, sw, ew, gt, ge, lt, le
    - Presence: pr
    - Logical: and, or, not, parentheses
    - Value paths kept verbatim as attribute names: emails[type eq "work"].value

Examples:
    userName eq "john.doe@example.com"
    active eq true and emails[type eq "work"].value co "@example.com"
    name.familyName co "Smith" or name.givenName co "John"
"""
from __future__ import annotations
import re
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Union

from scim_provisioning.core.errors import ValidationError
from scim_provisioning.core.predicates import (
    COMPARISON_OPERATORS,
    And,
    Comparison,
    Exists,
    MatchAll,
    Not,
    Or,
    Predicate,
    TriStateBooleanCodec,
    ValueCodec,
    apply_value_codecs,
)

_TOKEN_RE = re.compile(r'\s*("(?:[^"\\]|\\.)*"|[()\[\]]|[^\s()\[\]"][^\s()\[\]]*)')
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")
_VALUE_FILTER_RE = re.compile(r"\[[^\]]*\]")

LOGICAL_OPERATORS = {"and", "or"}


def _invalid(detail: str) -> ValidationError:
    return ValidationError(detail, scim_type="invalidFilter")


# ─────────────────────────────────────────────────────────────────────────────
# Filter AST
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ComparisonNode:
    attribute: str
    operator: str
    value: Any


@dataclass(frozen=True)
class PresenceNode:
    attribute: str


@dataclass(frozen=True)
class LogicalNode:
    operator: str  # "and" | "or" | "not"
    left: "FilterNode"
    right: Optional["FilterNode"] = None


FilterNode = Union[ComparisonNode, PresenceNode, LogicalNode]


# ─────────────────────────────────────────────────────────────────────────────
# Tokenizer
# ─────────────────────────────────────────────────────────────────────────────

def tokenize(text: str) -> tuple[str, ...]:
    """Split a filter string into lexemes.

    Quoted strings stay whole (quotes included) so the parser can tell
    ``"true"`` from ``true``. Keywords are recognised by the parser, never
    by substring, so ``address`` is one lexeme, not ``a``+``ddress``.

    Raises:
        ValidationError: unterminated string literal
    """
    lexemes = []
    position = 0
    text = text or ""
    while position < len(text):
        if text[position:].strip() == "":
            break
        match = _TOKEN_RE.match(text, position)
        if not match or match.end() == position:
            rest = text[position:].lstrip()
            if rest.startswith('"'):
                raise _invalid(f"Unterminated string in filter: {rest!r}")
            raise _invalid(f"Unparseable filter near: {text[position:]!r}")
        lexeme = match.group(1)
        lexemes.append(lexeme)
        position = match.end()
    return tuple(lexemes)


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────

def _coerce_value(lexeme: str) -> Any:
    if lexeme.startswith('"'):
        return re.sub(r"\\(.)", r"\1", lexeme[1:-1])
    lowered = lexeme.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    if _NUMBER_RE.match(lexeme):
        return float(lexeme) if any(c in lexeme for c in ".eE") else int(lexeme)
    return lexeme


class _Parser:
    """Recursive descent over an immutable lexeme tuple with a cursor."""

    def __init__(self, lexemes: tuple[str, ...]):
        self.lexemes = lexemes
        self.position = 0

    def peek(self) -> Optional[str]:
        if self.position < len(self.lexemes):
            return self.lexemes[self.position]
        return None

    def peek_keyword(self) -> Optional[str]:
        lexeme = self.peek()
        if lexeme is None or lexeme.startswith('"'):
            return None
        return lexeme.lower()

    def advance(self) -> str:
        lexeme = self.peek()
        if lexeme is None:
            raise _invalid("Unexpected end of filter expression")
        self.position += 1
        return lexeme

    def parse(self) -> FilterNode:
        if not self.lexemes:
            raise _invalid("Filter expression is empty")
        node = self.expression()
        if self.peek() is not None:
            remainder = " ".join(self.lexemes[self.position:])
            raise _invalid(f"Unexpected trailing input in filter: {remainder!r}")
        return node

    def expression(self) -> FilterNode:
        node = self.term()
        while self.peek_keyword() in LOGICAL_OPERATORS:
            operator = self.advance().lower()
            node = LogicalNode(operator, node, self.term())
        return node

    def term(self) -> FilterNode:
        lexeme = self.peek()
        if lexeme is None:
            raise _invalid("Expected a filter term but the expression ended")
        if lexeme == "(":
            self.advance()
            node = self.expression()
            if self.peek() != ")":
                raise _invalid("Unbalanced parenthesis in filter expression")
            self.advance()
            return node
        if self.peek_keyword() == "not":
            self.advance()
            return LogicalNode("not", self.term())
        return self.comparison()

    def attribute_path(self) -> str:
        attribute = self.advance()
        if attribute in ("(", ")", "[", "]") or attribute.startswith('"'):
            raise _invalid(f"Expected attribute name, found {attribute!r}")
        if self.peek() != "[":
            return attribute
        # Value path: collect the bracketed filter verbatim
        self.advance()
        inner = []
        while self.peek() != "]":
            if self.peek() is None:
                raise _invalid(f"Unbalanced bracket after attribute {attribute!r}")
            inner.append(self.advance())
        self.advance()
        path = f"{attribute}[{' '.join(inner)}]"
        following = self.peek()
        if following is not None and following.startswith("."):
            path += self.advance()
        return path

    def comparison(self) -> FilterNode:
        attribute = self.attribute_path()
        operator = self.peek_keyword()
        if operator is None:
            raise _invalid(f"Missing operator after attribute {attribute!r}")
        self.advance()
        if operator == "pr":
            return PresenceNode(attribute)
        if operator not in COMPARISON_OPERATORS:
            raise _invalid(f"Unsupported filter operator: {operator!r}")
        if self.peek() in (None, ")", "(", "[", "]"):
            raise _invalid(f"Missing value for {attribute} {operator}")
        return ComparisonNode(attribute, operator, _coerce_value(self.advance()))


def parse(lexemes: tuple[str, ...]) -> FilterNode:
    """Build a filter AST. ``and``/``or`` share precedence, left-associative."""
    return _Parser(tuple(lexemes)).parse()


# ─────────────────────────────────────────────────────────────────────────────
# Attribute mapping and compilation
# ─────────────────────────────────────────────────────────────────────────────

ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"

USER_ATTRIBUTE_MAP = {
    "id": "id",
    "userName": "email",
    "name.givenName": "firstName",
    "name.familyName": "lastName",
    "emails": "email",
    "emails.value": "email",
    "emails[primary eq true].value": "email",
    "phoneNumbers": "phoneNumber",
    "phoneNumbers.value": "phoneNumber",
    "active": "status",
    "externalId": "employeeId",
    f"{ENTERPRISE_USER_SCHEMA}:employeeNumber": "employeeId",
    f"{ENTERPRISE_USER_SCHEMA}:department": "assignment.unitId",
    "meta.created": "createdAt",
    "meta.lastModified": "updatedAt",
}

GROUP_ATTRIBUTE_MAP = {
    "id": "id",
    "displayName": "name",
    "externalId": "code",
    "meta.created": "createdAt",
    "meta.lastModified": "updatedAt",
}

USER_VALUE_CODECS = {"status": TriStateBooleanCodec(true_value="active")}


def _lookup(attribute: str, attribute_map: Mapping[str, str]) -> Optional[str]:
    if attribute in attribute_map:
        return attribute_map[attribute]
    lowered = attribute.lower()
    for key, field in attribute_map.items():
        if key.lower() == lowered:
            return field
    return None


def map_attributes(node: FilterNode, attribute_map: Mapping[str, str]) -> FilterNode:
    """Rename protocol attributes to storage fields; unknown names pass through."""
    if isinstance(node, LogicalNode):
        right = map_attributes(node.right, attribute_map) if node.right is not None else None
        return replace(node, left=map_attributes(node.left, attribute_map), right=right)
    field = _lookup(node.attribute, attribute_map)
    if field is None:
        stripped = _VALUE_FILTER_RE.sub("", node.attribute)
        field = _lookup(stripped, attribute_map)
    if field is None:
        return node
    return replace(node, attribute=field)


def _field_path(attribute: str) -> str:
    return _VALUE_FILTER_RE.sub("", attribute)


def compile_filter(node: FilterNode, value_codecs: Optional[Mapping[str, ValueCodec]] = None) -> Predicate:
    """Compile an AST into a Predicate, then apply value codecs."""
    return apply_value_codecs(_compile(node), value_codecs)


def _compile(node: FilterNode) -> Predicate:
    if isinstance(node, ComparisonNode):
        return Comparison(_field_path(node.attribute), node.operator, node.value)
    if isinstance(node, PresenceNode):
        return Exists(_field_path(node.attribute))
    if node.operator == "and":
        return And(_compile(node.left), _compile(node.right))
    if node.operator == "or":
        return Or(_compile(node.left), _compile(node.right))
    if node.operator == "not":
        return Not(_compile(node.left))
    raise _invalid(f"Unsupported logical operator: {node.operator!r}")


def compile_scim_filter(
    text: Optional[str],
    attribute_map: Mapping[str, str],
    value_codecs: Optional[Mapping[str, ValueCodec]] = None,
) -> Predicate:
    """Parse, map and compile a filter string. Blank filters match everything."""
    if text is None or not text.strip():
        return MatchAll()
    node = parse(tokenize(text))
    return compile_filter(map_attributes(node, attribute_map), value_codecs)
