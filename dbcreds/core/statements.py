"""
Statement templates.

Operators write statements such as::

    CREATE USER "{{username}}" WITH PASSWORD '{{password}}';GRANT ALL ON "vault" TO "{{username}}";

The plugin splits them into single statements where the backend needs it,
substitutes the generated username and the host supplied password, and
executes them one after another. Substitution is literal: quoting is the
template author's job.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from dbcreds.utils.exceptions import BackendConnectionError, OperationCancelledError, StatementError

USERNAME_PLACEHOLDER = "{{username}}"
PASSWORD_PLACEHOLDER = "{{password}}"
STATEMENT_SEPARATOR = ";"
REDACTED = "[REDACTED]"

logger = logging.getLogger(__name__)


class Statements(BaseModel):
    """Ordered statement templates supplied with a single request."""

    commands: List[str] = Field(default_factory=list)


def split_statements(templates: Iterable[str]) -> List[str]:
    """Split each template on ``;`` and drop the empty pieces.

    This runs before rendering so a password containing ``;`` never splits
    a statement.
    """
    statements: List[str] = []
    for template in templates:
        for piece in template.split(STATEMENT_SEPARATOR):
            if piece.strip():
                statements.append(piece.strip())
    return statements


def render_statements(templates: Sequence[str], *, username: str, password: str = "") -> List[str]:
    """Substitute the username and password placeholders.

    Args:
        templates: Statement templates in execution order
        username: Value for ``{{username}}``
        password: Value for ``{{password}}``

    Returns:
        List[str]: Rendered statements, whitespace-only templates removed
    """
    bindings = {USERNAME_PLACEHOLDER: username, PASSWORD_PLACEHOLDER: password}
    return [_substitute(template, bindings) for template in templates if template and template.strip()]


def _substitute(template: str, bindings: Mapping[str, str]) -> str:
    # Single left-to-right pass so substituted values are never rescanned.
    out: List[str] = []
    position = 0
    while position < len(template):
        for placeholder, value in bindings.items():
            if template.startswith(placeholder, position):
                out.append(value)
                position += len(placeholder)
                break
        else:
            out.append(template[position])
            position += 1
    return "".join(out)


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret in ``text`` with a marker."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


async def execute_statements(
        connector: Any,
        statements: Sequence[str],
        *,
        secrets: Iterable[str] = (),
        log: Optional[Any] = None
) -> int:
    """Execute rendered statements sequentially.

    Execution stops at the first failure; statements already executed are
    not rolled back and later ones are not attempted.

    Args:
        connector: Backend connector exposing ``execute``
        statements: Rendered statements
        secrets: Values to redact from errors and logs
        log: Logger to use

    Returns:
        int: Number of statements executed

    Raises:
        StatementError: If a statement fails (``NotFoundError`` for a missing user)
        BackendConnectionError: If the backend cannot be reached
    """
    log = log or logger
    secrets = tuple(secrets)
    executed = 0
    for index, statement in enumerate(statements):
        safe_statement = redact(statement, secrets)
        try:
            await connector.execute(statement)
        except StatementError as e:
            e.statement = safe_statement
            e.details.update({"statement": safe_statement, "statement_index": index, "executed": executed})
            raise
        except (BackendConnectionError, OperationCancelledError) as e:
            e.details.update({"statement_index": index, "executed": executed})
            raise
        except Exception as e:
            raise StatementError(
                f"Failed to execute statement {index + 1} of {len(statements)}: {redact(str(e), secrets)}",
                statement=safe_statement,
                statement_index=index,
                executed=executed
            ) from e
        executed += 1
        log.debug(
            "Executed statement",
            extra={"statement_index": index, "statement": safe_statement}
        )
    return executed
