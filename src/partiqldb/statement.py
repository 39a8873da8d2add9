"""
Statement classification for the accepted PartiQL subset.

A statement goes through two passes:

    text → Tokenize (mask literals) → Match shapes in order → ParsedStatement
             (one pass)                 (first match wins)

Shapes are tried in a fixed order: SELECT, RETURNING, INSERT, UPDATE, DELETE,
then the two pseudo-table meta-queries. Anything else is rejected with
`InvalidStatement`; nothing is guessed.

Placeholders (`?`) are counted only inside the WHERE, VALUE and SET fragments,
and never inside quoted literals or quoted identifiers.
"""
import functools
import re
from dataclasses import dataclass
from enum import Enum, auto

from partiqldb.exceptions import InvalidStatement

__all__ = [
    'StatementKind',
    'ParsedStatement',
    'TokenType',
    'Token',
    'tokenize_statement',
    'count_placeholders',
    'mask_literals',
    'parse_column_list',
    'classify',
    'DESCRIBE_TABLE',
    'LIST_TABLES',
]

DESCRIBE_TABLE = '!pqxd_describe_table'
LIST_TABLES = '!pqxd_list_tables'

# =============================================================================
# Data Structures
# =============================================================================


class StatementKind(Enum):
    """Shape of a classified statement."""
    SELECT = auto()
    INSERT = auto()
    UPDATE = auto()
    DELETE = auto()
    DESCRIBE_TABLE = auto()
    LIST_TABLES = auto()


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    """Immutable result of classifying one statement text.

    `selected_columns` is empty when the statement asked for `*`: rows are then
    materialized with the record's own field names, sorted.
    """
    kind: StatementKind
    text: str
    rewritten_text: str
    selected_columns: tuple[str, ...] = ()
    table_name: str | None = None
    index_name: str | None = None
    placeholder_count: int = 0
    returning: str | None = None        # e.g. 'ALL OLD'

    @property
    def is_meta(self) -> bool:
        return self.kind in {StatementKind.DESCRIBE_TABLE, StatementKind.LIST_TABLES}

    @property
    def returns_rows(self) -> bool:
        """True for statements whose result is a row set."""
        return self.kind is StatementKind.SELECT or self.is_meta or self.returning is not None


class TokenType(Enum):
    """Token types identified while scanning a statement."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()         # 'text'
    QUOTED_IDENTIFIER = auto()      # "name"
    PLACEHOLDER = auto()            # ?


@dataclass(slots=True)
class Token:
    """Token from statement scanning."""
    type: TokenType
    text: str
    start: int
    end: int


# =============================================================================
# Regex Patterns
# =============================================================================

_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<identifier>"(?:[^"]|"")*")
    |(?P<qmark>\?)
""", re.VERBOSE)

# table and index names are always double-quoted
_NAME = r'"[a-z0-9_\-.]{1,255}"'
_COLUMN = r'(?:"[a-z0-9_\-.]{1,255}"|\'[a-z0-9_\-.]{1,255}\'|[a-z0-9_\-.]{1,255})'
_COLUMN_LIST = rf'(?:\*|{_COLUMN}(?:\s*,\s*{_COLUMN})*)'
_FLAGS = re.IGNORECASE | re.DOTALL

_SELECT = re.compile(
    rf'^\s*SELECT\s+(?P<columns>{_COLUMN_LIST})\s+FROM\s+(?P<table>{_NAME})'
    rf'(?:\.(?P<index>{_NAME}))?(?:\s+WHERE\s+(?P<where>.+?))?\s*$', _FLAGS)

_RETURNING = re.compile(
    rf'^(?P<body>.+?)\s+RETURNING\s+(?P<mode>ALL|MODIFIED)\s+(?P<image>OLD|NEW)\s+'
    rf'(?P<columns>{_COLUMN_LIST})\s*$', _FLAGS)

_INSERT = re.compile(
    rf'^\s*INSERT\s+INTO\s+(?P<table>{_NAME})\s+VALUE\s+(?P<value>\{{.*\}})\s*$', _FLAGS)

_UPDATE = re.compile(
    rf'^\s*UPDATE\s+(?P<table>{_NAME})\s+(?P<set>(?:SET|REMOVE)\s+.+?)'
    rf'\s+WHERE\s+(?P<where>.+?)\s*$', _FLAGS)

_DELETE = re.compile(
    rf'^\s*DELETE\s+FROM\s+(?P<table>{_NAME})\s+WHERE\s+(?P<where>.+?)\s*$', _FLAGS)

_DESCRIBE_TABLE = re.compile(
    rf'^\s*SELECT\s+(?P<columns>{_COLUMN_LIST})\s+FROM\s+"{re.escape(DESCRIBE_TABLE)}"'
    rf'\s+WHERE\s+table_name\s*=\s*(?P<target>\?|\'[a-z0-9_\-.]{{3,255}}\')\s*$', _FLAGS)

_LIST_TABLES = re.compile(
    rf'^\s*SELECT\s+\*\s+FROM\s+"{re.escape(LIST_TABLES)}"\s*$', _FLAGS)

_SET_KEYWORD = re.compile(r'\b(SET|REMOVE)\b', re.IGNORECASE)
_PATH = r'(?:"[^"]+"|[a-z0-9_\-.\[\]]+)(?:\.(?:"[^"]+"|[a-z0-9_\-\[\]]+))*'
_SET_FRAGMENT = re.compile(rf'^\s*{_PATH}\s*=\s*\S.*$', _FLAGS)
_REMOVE_FRAGMENT = re.compile(rf'^\s*{_PATH}\s*$', _FLAGS)


# =============================================================================
# Tokenizing
# =============================================================================

def tokenize_statement(text: str) -> list[Token]:
    """Scan a statement into tokens in a single pass.

    Parameters
        text: statement string

    Returns
        List of tokens preserving all statement text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(text):
        start, end = match.span()
        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, text[last_end:start], last_end, start))

        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('identifier'):
            ttype = TokenType.QUOTED_IDENTIFIER
        else:
            ttype = TokenType.PLACEHOLDER

        tokens.append(Token(ttype, match.group(0), start, end))
        last_end = end

    if last_end < len(text):
        tokens.append(Token(TokenType.SQL_TEXT, text[last_end:], last_end, len(text)))

    return tokens


def count_placeholders(fragment: str | None) -> int:
    """Count positional markers outside of quoted literals and identifiers."""
    if not fragment or '?' not in fragment:
        return 0
    return sum(1 for token in tokenize_statement(fragment)
               if token.type == TokenType.PLACEHOLDER)


def mask_literals(text: str) -> str:
    """Blank out the content of single-quoted literals.

    The result has the same length as the input so match spans taken on the
    masked text can be used to slice the original.
    """
    parts = []
    for token in tokenize_statement(text):
        if token.type == TokenType.STRING_LITERAL:
            parts.append("'" + '_' * (len(token.text) - 2) + "'")
        else:
            parts.append(token.text)
    return ''.join(parts)


def parse_column_list(column_list: str) -> tuple[str, ...]:
    """Split a column list, stripping quotes and whitespace.

    `*` alone yields an empty tuple.
    """
    if column_list.strip() == '*':
        return ()
    return tuple(column.replace("'", '').replace('"', '').strip()
                 for column in column_list.split(','))


def _unquote(name: str) -> str:
    return name.strip().strip('"')


def _group(text: str, match: re.Match, name: str) -> str | None:
    """Slice a named group out of the original (unmasked) text."""
    start, end = match.span(name)
    if start < 0:
        return None
    return text[start:end]


# =============================================================================
# Shape Matching
# =============================================================================

def _match_select(text: str, masked: str) -> ParsedStatement | None:
    match = _SELECT.match(masked)
    if match is None:
        return None
    where = _group(text, match, 'where')
    index = _group(text, match, 'index')
    return ParsedStatement(
        kind=StatementKind.SELECT,
        text=text,
        rewritten_text=text,
        selected_columns=parse_column_list(_group(text, match, 'columns')),
        table_name=_unquote(_group(text, match, 'table')),
        index_name=_unquote(index) if index else None,
        placeholder_count=count_placeholders(where))


def _validate_set_clause(text: str, masked_clause: str) -> None:
    """Check every SET/REMOVE fragment of an UPDATE."""
    # identifiers such as "set" must not be taken for keywords
    masked_clause = re.sub(r'"[^"]*"', lambda m: '"' + '_' * (len(m.group()) - 2) + '"',
                           masked_clause)
    keywords = list(_SET_KEYWORD.finditer(masked_clause))
    if not keywords or keywords[0].start() != 0:
        raise InvalidStatement(text, 'UPDATE requires SET or REMOVE')
    bounds = [kw.start() for kw in keywords] + [len(masked_clause)]
    for keyword, end in zip(keywords, bounds[1:]):
        fragment = masked_clause[keyword.end():end]
        pattern = _SET_FRAGMENT if keyword.group(1).upper() == 'SET' else _REMOVE_FRAGMENT
        if not pattern.match(fragment):
            raise InvalidStatement(text, f'malformed {keyword.group(1).upper()} fragment')


def _match_update(text: str, masked: str) -> ParsedStatement | None:
    match = _UPDATE.match(masked)
    if match is None:
        return None
    _validate_set_clause(text, match.group('set'))
    return ParsedStatement(
        kind=StatementKind.UPDATE,
        text=text,
        rewritten_text=text,
        table_name=_unquote(_group(text, match, 'table')),
        placeholder_count=count_placeholders(_group(text, match, 'set'))
        + count_placeholders(_group(text, match, 'where')))


def _match_delete(text: str, masked: str) -> ParsedStatement | None:
    match = _DELETE.match(masked)
    if match is None:
        return None
    return ParsedStatement(
        kind=StatementKind.DELETE,
        text=text,
        rewritten_text=text,
        table_name=_unquote(_group(text, match, 'table')),
        placeholder_count=count_placeholders(_group(text, match, 'where')))


def _match_insert(text: str, masked: str) -> ParsedStatement | None:
    match = _INSERT.match(masked)
    if match is None:
        return None
    return ParsedStatement(
        kind=StatementKind.INSERT,
        text=text,
        rewritten_text=text,
        table_name=_unquote(_group(text, match, 'table')),
        placeholder_count=count_placeholders(_group(text, match, 'value')))


def _match_returning(text: str, masked: str) -> ParsedStatement | None:
    """UPDATE/DELETE with a RETURNING projection.

    The forwarded statement always requests `*`; the requested columns are
    applied when rows are materialized.
    """
    match = _RETURNING.match(masked)
    if match is None:
        return None
    body_end = match.end('body')
    body, masked_body = text[:body_end], masked[:body_end]
    parsed = _match_update(body, masked_body) or _match_delete(body, masked_body)
    if parsed is None:
        raise InvalidStatement(text, 'RETURNING is only supported on UPDATE and DELETE')

    start, end = match.span('columns')
    return ParsedStatement(
        kind=parsed.kind,
        text=text,
        rewritten_text=f'{text[:start]}*{text[end:]}',
        selected_columns=parse_column_list(text[start:end]),
        table_name=parsed.table_name,
        placeholder_count=parsed.placeholder_count,
        returning=f"{match.group('mode').upper()} {match.group('image').upper()}")


def _match_meta(text: str, masked: str) -> ParsedStatement | None:
    if _LIST_TABLES.match(masked):
        return ParsedStatement(
            kind=StatementKind.LIST_TABLES,
            text=text,
            rewritten_text=text,
            selected_columns=('TableName',))

    match = _DESCRIBE_TABLE.match(masked)
    if match is None:
        return None
    target = _group(text, match, 'target')
    if target == '?':
        table_name, placeholders = None, 1
    else:
        table_name, placeholders = target.strip("'"), 0
        if not re.fullmatch(r'[a-z0-9_\-.]{3,255}', table_name, re.IGNORECASE):
            raise InvalidStatement(text, 'invalid table name')
    return ParsedStatement(
        kind=StatementKind.DESCRIBE_TABLE,
        text=text,
        rewritten_text=text,
        selected_columns=parse_column_list(_group(text, match, 'columns')),
        table_name=table_name,
        placeholder_count=placeholders)


_SHAPES = (
    _match_select,
    _match_returning,
    _match_insert,
    _match_update,
    _match_delete,
    _match_meta,
)


def classify(text: str) -> ParsedStatement:
    """Classify a statement into a `ParsedStatement`.

    Parameters
        text: statement string

    Returns
        ParsedStatement for the first shape that matches

    Raises
        InvalidStatement: the text matches none of the accepted shapes
    """
    if not isinstance(text, str):
        raise InvalidStatement(repr(text), 'statement must be a string')
    if not text.strip():
        raise InvalidStatement(text, 'empty statement')
    return _classify(text)


@functools.lru_cache(maxsize=512)
def _classify(text: str) -> ParsedStatement:
    masked = mask_literals(text)
    for shape in _SHAPES:
        parsed = shape(text, masked)
        if parsed is not None:
            return parsed

    raise InvalidStatement(text)
