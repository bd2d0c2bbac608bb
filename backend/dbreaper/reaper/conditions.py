"""
Predicate construction for reaps.

The caller's condition and the expiry clause are each parenthesized and
joined with ``and``. The expiry cutoff is always a bound parameter. Raw caller
SQL is screened before it gets anywhere near a statement. Conditions from
untrusted sources should also go through ``restrict_to_columns``, which only
lets columns of the table be compared with bound values.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from dbreaper.reaper.errors import InvalidInputError
from dbreaper.reaper.types import CUTOFF_PARAM, Condition, Predicate

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

# Same bind syntax text() recognises
BIND_RE = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")

STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")

FORBIDDEN_TOKENS = (";", "--", "/*", "*/", "#")

# Statement keywords that have no place in a row filter
FORBIDDEN_KEYWORDS_RE = re.compile(
    r"\b(select|union|insert|update|delete|drop|alter|create|attach|pragma|exec|execute)\b",
    re.IGNORECASE,
)

# Tokens of the restricted grammar: binds, comparisons, punctuation and words
RESTRICTED_TOKEN_RE = re.compile(
    r"\s*(?:(?P<bind>:\w+)|(?P<op><=|>=|<>|!=|=|<|>)|(?P<punct>[(),])|(?P<word>[A-Za-z_][A-Za-z0-9_$]*))"
)

SanitizedCondition = Tuple[str, Dict[str, Any]]


def validate_identifier(name: str, what: str = "identifier") -> str:
    """Return name if it is a bare SQL identifier, else raise InvalidInputError"""
    if not name or not IDENTIFIER_RE.match(name):
        raise InvalidInputError(f"Invalid {what}: {name!r}")
    return name


def _check_balanced(sql: str) -> None:
    for quote in ("'", '"', "`"):
        if sql.count(quote) % 2:
            raise InvalidInputError(f"Unbalanced {quote} in condition: {sql!r}")

    depth = 0
    for char in STRING_LITERAL_RE.sub("''", sql):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                break
    if depth != 0:
        raise InvalidInputError(f"Unbalanced parentheses in condition: {sql!r}")


def sanitize_condition(conditions: Optional[Condition]) -> Optional[SanitizedCondition]:
    """
    Screen a caller condition.

    Args:
        conditions: None, a raw SQL string, or a ``(sql, params)`` tuple
            using ``:name`` binds

    Returns:
        ``(sql, params)`` or None when the condition is blank

    Raises:
        InvalidInputError: On statement separators, comments, subqueries,
            unbalanced quoting, or binds that don't line up with the params
    """
    if conditions is None:
        return None

    if isinstance(conditions, str):
        sql, params = conditions, {}
    elif isinstance(conditions, (tuple, list)) and len(conditions) == 2:
        sql, params = conditions[0], dict(conditions[1] or {})
    else:
        raise InvalidInputError(
            "Conditions must be a SQL string or a (sql, params) tuple"
        )

    if not isinstance(sql, str):
        raise InvalidInputError("Condition SQL must be a string")

    sql = sql.strip()
    if not sql:
        if params:
            raise InvalidInputError("Parameters given for an empty condition")
        return None

    for token in FORBIDDEN_TOKENS:
        if token in sql:
            raise InvalidInputError(f"Forbidden token {token!r} in condition: {sql!r}")
    _check_balanced(sql)

    keyword = FORBIDDEN_KEYWORDS_RE.search(STRING_LITERAL_RE.sub("''", sql))
    if keyword:
        raise InvalidInputError(f"Forbidden keyword {keyword.group(1)!r} in condition: {sql!r}")

    binds = set(BIND_RE.findall(sql))
    if CUTOFF_PARAM in binds or CUTOFF_PARAM in params:
        raise InvalidInputError(f"'{CUTOFF_PARAM}' is a reserved parameter name")
    missing = binds - set(params)
    if missing:
        raise InvalidInputError(f"No value supplied for parameter(s): {', '.join(sorted(missing))}")
    unused = set(params) - binds
    if unused:
        raise InvalidInputError(f"Parameter(s) not used in condition: {', '.join(sorted(unused))}")

    return sql, params


class _RestrictedParser:
    """
    Recursive descent check of a condition built only from columns and binds.

        expr       := term (("and" | "or") term)*
        term       := "not" term | "(" expr ")" | comparison
        comparison := column op bind
                    | column "is" ["not"] "null"
                    | column ["not"] "like" bind
                    | column ["not"] "in" "(" bind ("," bind)* ")"
                    | column ["not"] "between" bind "and" bind
    """

    KEYWORDS = {"and", "or", "not", "is", "null", "like", "in", "between"}

    def __init__(self, sql: str, columns: FrozenSet[str]):
        self.sql = sql
        self.columns = {c.lower() for c in columns}
        self.tokens = self._tokenize(sql)
        self.pos = 0

    def _tokenize(self, sql: str) -> List[Tuple[str, str]]:
        tokens = []
        pos = 0
        sql = sql.rstrip()
        while pos < len(sql):
            match = RESTRICTED_TOKEN_RE.match(sql, pos)
            if not match or match.end() == pos:
                raise InvalidInputError(
                    f"Only columns, comparisons and :named parameters are allowed in conditions: {sql!r}"
                )
            kind = match.lastgroup
            value = match.group(kind)
            if kind == "word":
                value = value.lower()
                if value not in self.KEYWORDS:
                    kind = "column"
            tokens.append((kind, value))
            pos = match.end()
        return tokens

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, kind: str, value: Optional[str] = None) -> bool:
        token = self._peek()
        if token and token[0] == kind and (value is None or token[1] == value):
            self.pos += 1
            return True
        return False

    def _expect(self, kind: str, value: Optional[str] = None) -> None:
        if not self._accept(kind, value):
            found = self._peek()
            raise InvalidInputError(
                f"Expected {value or kind} but found {found[1] if found else 'end of condition'!r} "
                f"in condition: {self.sql!r}"
            )

    def parse(self) -> None:
        self._expr()
        if self._peek() is not None:
            raise InvalidInputError(f"Unexpected {self._peek()[1]!r} in condition: {self.sql!r}")

    def _expr(self) -> None:
        self._term()
        while self._accept("word", "and") or self._accept("word", "or"):
            self._term()

    def _term(self) -> None:
        if self._accept("word", "not"):
            self._term()
        elif self._accept("punct", "("):
            self._expr()
            self._expect("punct", ")")
        else:
            self._comparison()

    def _comparison(self) -> None:
        token = self._peek()
        self._expect("column")
        if token[1] not in self.columns:
            raise InvalidInputError(f"Unknown column {token[1]!r} in condition: {self.sql!r}")

        if self._accept("op"):
            self._expect("bind")
        elif self._accept("word", "is"):
            self._accept("word", "not")
            self._expect("word", "null")
        else:
            self._accept("word", "not")
            if self._accept("word", "like"):
                self._expect("bind")
            elif self._accept("word", "in"):
                self._expect("punct", "(")
                self._expect("bind")
                while self._accept("punct", ","):
                    self._expect("bind")
                self._expect("punct", ")")
            elif self._accept("word", "between"):
                self._expect("bind")
                self._expect("word", "and")
                self._expect("bind")
            else:
                raise InvalidInputError(f"Expected a comparison after {token[1]!r} in condition: {self.sql!r}")


def restrict_to_columns(sql: str, columns: FrozenSet[str]) -> str:
    """
    Check that ``sql`` only compares columns of the table with bound values.

    Literals, functions, arithmetic and references to anything but ``columns``
    are rejected, so the condition can't read from other tables.

    Raises:
        InvalidInputError: If the condition falls outside the grammar
    """
    _RestrictedParser(sql, columns).parse()
    return sql


def build_predicate(
    expiry: int,
    conditions: Optional[Condition] = None,
    ignore_expiry: bool = False,
    now: Optional[datetime] = None,
    timestamp_column: str = "created_at",
    sanitize: Callable[[Optional[Condition]], Optional[SanitizedCondition]] = sanitize_condition,
) -> Predicate:
    """
    Combine the caller condition with the expiry clause.

    An empty result matches every row of the table.
    """
    clauses = []
    params: Dict[str, Any] = {}

    sanitized = sanitize(conditions)
    if sanitized:
        sql, condition_params = sanitized
        clauses.append(sql)
        params.update(condition_params)

    cutoff = None
    if not ignore_expiry:
        if isinstance(expiry, bool) or not isinstance(expiry, int) or expiry < 0:
            raise InvalidInputError(f"Expiry must be a non-negative number of seconds, got {expiry!r}")
        validate_identifier(timestamp_column, "timestamp column")
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=expiry)
        clauses.append(f"{timestamp_column} < :{CUTOFF_PARAM}")

    sql = " and ".join(f"({clause})" for clause in clauses if clause.strip())
    if not sql:
        logger.warning("Empty reap predicate: every row in the table will be reaped")

    return Predicate(sql=sql, params=params, cutoff=cutoff)
