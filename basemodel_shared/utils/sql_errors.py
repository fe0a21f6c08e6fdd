"""
SQL error classifier.

Turns a DBAPI error raised through SQLAlchemy into a user-facing message.
Integrity violations (SQLSTATE class 23) and invalid transaction states
(class 25) get a translated message keyed by the model name; every other
error passes through verbatim.

Usage:
    try:
        session.flush()
    except DBAPIError as exc:
        classified = classify_sql_error(exc, "Order")
        bag.add(classified.key, classified.message)
"""

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from basemodel_shared.config.constants import ErrorKeys, ErrorMessages, SqlState


# Fallback for sqlite3 builds without sqlite_errorcode
_SQLITE_MESSAGE_PREFIXES: dict[str, str] = {
    "NOT NULL constraint failed": SqlState.NOT_NULL_VIOLATION,
    "FOREIGN KEY constraint failed": SqlState.FOREIGN_KEY_VIOLATION,
    "UNIQUE constraint failed": SqlState.UNIQUE_VIOLATION,
    "CHECK constraint failed": SqlState.CHECK_VIOLATION,
}

_TEMPLATES: dict[str, str] = {
    SqlState.NOT_NULL_VIOLATION: ErrorMessages.NOT_NULL,
    SqlState.FOREIGN_KEY_VIOLATION: ErrorMessages.FOREIGN_KEY,
    SqlState.UNIQUE_VIOLATION: ErrorMessages.UNIQUE,
    SqlState.CHECK_VIOLATION: ErrorMessages.CHECK,
}


@dataclass(frozen=True)
class ClassifiedSqlError:
    """Result of classifying a storage error."""

    key: str
    message: str
    sqlstate: str | None
    translated: bool


def _driver_error(exc: BaseException) -> BaseException:
    return getattr(exc, "orig", None) or exc


def sqlstate_of(exc: BaseException) -> str | None:
    """
    Best-effort SQLSTATE for an exception.

    Reads psycopg ``sqlstate``, psycopg2 ``pgcode`` and sqlite3 extended
    result codes. An IntegrityError without a usable code maps to 23000.
    """
    orig = _driver_error(exc)

    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)

    sqlite_code = getattr(orig, "sqlite_errorcode", None)
    if sqlite_code in SqlState.SQLITE_CODES:
        return SqlState.SQLITE_CODES[sqlite_code]

    text = str(orig)
    for prefix, code in _SQLITE_MESSAGE_PREFIXES.items():
        if text.startswith(prefix):
            return code

    if isinstance(exc, IntegrityError):
        return SqlState.INTEGRITY_CONSTRAINT_VIOLATION
    return None


def _detail(exc: BaseException) -> str:
    lines = str(_driver_error(exc)).strip().splitlines()
    return lines[0] if lines else type(exc).__name__


def classify_sql_error(exc: BaseException, model_name: str) -> ClassifiedSqlError:
    """
    Classify a storage error raised while editing ``model_name``.

    Translated errors are keyed by the model name; pass-through errors are
    keyed by ``general`` and carry the driver message verbatim.
    """
    code = sqlstate_of(exc)
    sql_class = SqlState.class_of(code)
    detail = _detail(exc)

    if sql_class not in SqlState.TRANSLATED_CLASSES:
        return ClassifiedSqlError(ErrorKeys.GENERAL, detail, code, translated=False)

    if sql_class == "25":
        template = ErrorMessages.TRANSACTION_STATE
    else:
        template = _TEMPLATES.get(code, ErrorMessages.INTEGRITY)

    return ClassifiedSqlError(
        key=model_name,
        message=template.format(model=model_name, detail=detail),
        sqlstate=code,
        translated=True,
    )
