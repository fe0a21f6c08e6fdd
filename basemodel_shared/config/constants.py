"""
Centralized constants for the library.
Avoid magic strings for SQLSTATE codes, error keys and relation kinds.

Usage:
    from basemodel_shared.config.constants import SqlState, ErrorKeys, Cardinality

    if SqlState.class_of(code) in SqlState.TRANSLATED_CLASSES:
        ...
"""

from typing import Final


# =============================================================================
# Relationship cardinality
# =============================================================================


class Cardinality:
    """Cardinality of a declared relationship."""

    ONE: Final[str] = "one"
    MANY: Final[str] = "many"

    ALL: Final[tuple[str, ...]] = (ONE, MANY)


# =============================================================================
# Error bag keys
# =============================================================================


class ErrorKeys:
    """Keys used in the aggregated error bag."""

    GENERAL: Final[str] = "general"


# =============================================================================
# SQLSTATE codes
# =============================================================================


class SqlState:
    """
    SQLSTATE codes recognised by the SQL error classifier.

    Class 23 is "integrity constraint violation", class 25 is
    "invalid transaction state". Everything else passes through verbatim.
    """

    INTEGRITY_CONSTRAINT_VIOLATION: Final[str] = "23000"
    NOT_NULL_VIOLATION: Final[str] = "23502"
    FOREIGN_KEY_VIOLATION: Final[str] = "23503"
    UNIQUE_VIOLATION: Final[str] = "23505"
    CHECK_VIOLATION: Final[str] = "23514"
    INVALID_TRANSACTION_STATE: Final[str] = "25000"

    TRANSLATED_CLASSES: Final[frozenset[str]] = frozenset({"23", "25"})

    # sqlite3 extended result codes -> SQLSTATE
    SQLITE_CODES: Final[dict[int, str]] = {
        275: CHECK_VIOLATION,        # SQLITE_CONSTRAINT_CHECK
        787: FOREIGN_KEY_VIOLATION,  # SQLITE_CONSTRAINT_FOREIGNKEY
        1299: NOT_NULL_VIOLATION,    # SQLITE_CONSTRAINT_NOTNULL
        1555: UNIQUE_VIOLATION,      # SQLITE_CONSTRAINT_PRIMARYKEY
        2067: UNIQUE_VIOLATION,      # SQLITE_CONSTRAINT_UNIQUE
    }

    @staticmethod
    def class_of(code: str | None) -> str | None:
        """Two-character SQLSTATE class, or None."""
        if not code or len(code) < 2:
            return None
        return code[:2]


# =============================================================================
# Message templates
# =============================================================================


class ErrorMessages:
    """User-facing message templates."""

    NOT_NULL: Final[str] = "{model}: a required value is missing ({detail})"
    FOREIGN_KEY: Final[str] = "{model}: the referenced record does not exist or is still in use ({detail})"
    UNIQUE: Final[str] = "{model}: a record with the same value already exists ({detail})"
    CHECK: Final[str] = "{model}: a value is outside the allowed range ({detail})"
    TRANSACTION_STATE: Final[str] = "{model}: the transaction is in an invalid state ({detail})"
    INTEGRITY: Final[str] = "{model}: the data violates a database constraint ({detail})"

    MISSING_RELATION_CONFIG: Final[str] = (
        "Relation '{relation}' of {model} has no inverse declared on {target}"
    )
    RELATION_NOT_FOUND: Final[str] = "Relation '{relation}' not found on {model}"
    BULK_VALIDATION: Final[str] = "Error in bulk validation"
    REQUIRED: Final[str] = "This field is required."


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Numeric limits used across the library."""

    DEFAULT_PAGE_SIZE: Final[int] = 10
    MAX_PAGE_SIZE: Final[int] = 1000
