"""Migration unit definition and name/script utilities."""

import re
import sqlite3
from dataclasses import dataclass

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from .errors import InvalidNameError, InvalidScriptError

MAX_NAME_LENGTH = 128

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)*$")

# SQLAlchemy dialect name -> sqlglot dialect name
_SQLGLOT_DIALECTS = {
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
    "mssql": "tsql",
    "oracle": "oracle",
}


def validate_name(name: str) -> str:
    """Validate a migration name.

    Args:
        name: Candidate name.

    Returns:
        The name, unchanged.

    Raises:
        InvalidNameError: If the name is not lowercase snake_case.
    """
    if not isinstance(name, str) or not name:
        raise InvalidNameError(str(name), "name must be a non-empty string")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidNameError(
            name, f"name is longer than {MAX_NAME_LENGTH} characters"
        )
    if not NAME_PATTERN.match(name):
        raise InvalidNameError(
            name,
            "use lowercase letters, digits and single underscores, "
            "starting with a letter (e.g. create_users_table)",
        )
    return name


def sqlglot_dialect(dialect_name: str | None) -> str | None:
    """Map a SQLAlchemy dialect name to the sqlglot tokenizer dialect."""
    if dialect_name is None:
        return None
    return _SQLGLOT_DIALECTS.get(dialect_name)


def split_statements(script: str, dialect: str | None = None) -> list[str]:
    """Split script text into individual statements.

    Statements are cut at top-level semicolons as seen by the sqlglot
    tokenizer, so semicolons in string literals, quoted identifiers and
    comments are kept. Dollar-quoted PostgreSQL bodies are single tokens, and
    for SQLite a cut is made only where ``sqlite3.complete_statement`` agrees,
    which keeps trigger bodies whole. The text of each statement is returned
    verbatim.

    Args:
        script: SQL script text, possibly empty.
        dialect: sqlglot dialect name used to tokenize the script.

    Returns:
        Non-empty statements in script order.

    Raises:
        InvalidScriptError: If the tokenizer cannot read the script.
    """
    if not script or not script.strip():
        return []

    try:
        tokens = sqlglot.tokenize(script, read=dialect)
    except TokenError as e:
        raise InvalidScriptError(f"Cannot tokenize migration script: {e}") from e

    statements = []
    start = 0
    has_tokens = False
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            # Semicolons inside a CREATE TRIGGER ... BEGIN ... END body
            if dialect == "sqlite" and not sqlite3.complete_statement(
                script[start : token.end + 1]
            ):
                continue
            if has_tokens:
                statements.append(script[start : token.start].strip())
            start = token.end + 1
            has_tokens = False
        else:
            has_tokens = True

    if has_tokens:
        statements.append(script[start:].strip())

    return statements


@dataclass(frozen=True)
class MigrationUnit:
    """A single named migration with forward and reverse scripts.

    Units are plain values; the name is validated on construction and can
    never change afterwards.
    """

    name: str
    forward_script: str = ""
    reverse_script: str = ""

    def __post_init__(self) -> None:
        validate_name(self.name)
        for field_name in ("forward_script", "reverse_script"):
            if not isinstance(getattr(self, field_name), str):
                raise InvalidScriptError(
                    f"{field_name} of migration {self.name!r} must be text",
                    context={"name": self.name},
                )

    def forward(self) -> str:
        """Script text that applies this migration."""
        return self.forward_script

    def reverse(self) -> str:
        """Script text that undoes this migration."""
        return self.reverse_script

    def forward_statements(self, dialect: str | None = None) -> list[str]:
        return split_statements(self.forward_script, dialect)

    def reverse_statements(self, dialect: str | None = None) -> list[str]:
        return split_statements(self.reverse_script, dialect)

    @property
    def is_reversible(self) -> bool:
        """Whether reverting runs any statement at all."""
        return bool(self.reverse_script.strip())

    def __str__(self) -> str:
        return self.name
