"""
Utilities module: exceptions, error bag, SQL error classifier.
"""

from basemodel_shared.utils.error_bag import ErrorBag
from basemodel_shared.utils.exceptions import (
    AppException,
    BulkValidationError,
    FieldValidationError,
    ForbiddenError,
    NotFoundError,
    RelationNotFoundError,
    ValidationError,
)
from basemodel_shared.utils.sql_errors import classify_sql_error, sqlstate_of

__all__ = [
    "ErrorBag",
    # exceptions
    "AppException",
    "BulkValidationError",
    "FieldValidationError",
    "ForbiddenError",
    "NotFoundError",
    "RelationNotFoundError",
    "ValidationError",
    # sql errors
    "classify_sql_error",
    "sqlstate_of",
]
