"""
Attribute filter rewriting.

Clients send the `where` parameter as raw SQL. It is tokenized and
rebuilt: field names are matched against the layer schema and emitted
as quoted identifiers, string literals become bound parameters, and
anything the tokenizer does not recognize is rejected.
"""

import logging
import re
from typing import NamedTuple, Optional

from .errors import InvalidField, InvalidWhereClause
from .models import LayerMetadata, quote_identifier

logger = logging.getLogger(__name__)

_KEYWORDS = {
    "AND", "OR", "NOT", "IN", "BETWEEN", "LIKE", "ILIKE",
    "IS", "NULL", "TRUE", "FALSE", "DATE", "TIMESTAMP",
}

_FUNCTIONS = {"UPPER", "LOWER"}

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<string>'(?:[^']|'')*')
    | (?P<number>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)
    | (?P<quoted>"(?:[^"]|"")+")
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<forbidden>--|/\*|\*/|;)
    | (?P<op><>|!=|<=|>=|[=<>(),+\-*/])
    """,
    re.VERBOSE,
)


class Token(NamedTuple):
    kind: str
    text: str
    pos: int


class RewrittenWhere(NamedTuple):
    sql: str
    params: tuple
    fields: list[str]


def tokenize(where: str) -> list[Token]:
    """Split a filter into tokens, rejecting anything unrecognized.

    Comment markers and statement terminators are only recognized outside
    string literals, so a literal such as 'a; b' is accepted.
    """
    tokens = []
    pos = 0
    while pos < len(where):
        m = _TOKEN_RE.match(where, pos)
        if m is None:
            raise InvalidWhereClause(
                f"Unexpected character '{where[pos]}' at position {pos} in where clause"
            )
        if m.lastgroup == "forbidden":
            raise InvalidWhereClause(
                f"Forbidden sequence '{m.group(0)}' at position {pos} in where clause"
            )
        tokens.append(Token(m.lastgroup, m.group(0), pos))
        pos = m.end()
    return tokens


def rewrite_where(
    where: str, meta: LayerMetadata, qualifier: Optional[str] = None
) -> RewrittenWhere:
    """Rebuild a client filter as safe SQL for the given layer.

    Field names become quoted canonical identifiers, prefixed with
    `qualifier.` when one is given. Parentheses must balance so the
    filter cannot close a group it did not open.
    """
    parts = []
    params = []
    fields = []
    depth = 0

    for token in tokenize(where):
        if token.kind == "space":
            parts.append(" ")
        elif token.kind == "string":
            params.append(token.text[1:-1].replace("''", "'"))
            parts.append("%s")
        elif token.kind in ("number", "op"):
            if token.text == "(":
                depth += 1
            elif token.text == ")":
                depth -= 1
                if depth < 0:
                    raise InvalidWhereClause(
                        f"Unbalanced ')' at position {token.pos} in where clause"
                    )
            parts.append(token.text)
        elif token.kind == "quoted":
            name = token.text[1:-1].replace('""', '"')
            parts.append(_field_identifier(name, meta, fields, qualifier))
        else:
            upper = token.text.upper()
            if upper in _KEYWORDS or upper in _FUNCTIONS:
                parts.append(upper)
            else:
                parts.append(_field_identifier(token.text, meta, fields, qualifier))

    if depth:
        raise InvalidWhereClause(f"{depth} unclosed '(' in where clause")

    sql = "".join(parts).strip()
    logger.debug("Rewrote where %r -> %r %r", where, sql, params)
    return RewrittenWhere(sql, tuple(params), fields)


def _field_identifier(
    name: str, meta: LayerMetadata, seen: list[str], qualifier: Optional[str]
) -> str:
    field = meta.field(name)
    if field is None:
        raise InvalidField(f"Unknown field '{name}' in where clause")
    if field.name not in seen:
        seen.append(field.name)
    identifier = quote_identifier(field.name)
    return f"{qualifier}.{identifier}" if qualifier else identifier
