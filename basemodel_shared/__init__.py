"""
Shared infrastructure for the basemodel library.

STRUCTURE:
- basemodel_shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging
  - constants.py: SQLSTATE codes, error keys, message templates, limits

- basemodel_shared.infrastructure: Database
  - db.py: SQLAlchemy engine, session factory, get_db()
  - transactions.py: Nested (savepoint based) transactions per session

- basemodel_shared.security: Request security helpers
  - decryption.py: Decryption key from access token + X-Encryption header

- basemodel_shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging
  - error_bag.py: Aggregated error container for nested edits
  - sql_errors.py: SQL error classifier

IMPORT EXAMPLES:
    from basemodel_shared.config.settings import settings
    from basemodel_shared.config.logging import get_logger
    from basemodel_shared.infrastructure.transactions import TransactionManager
    from basemodel_shared.utils.exceptions import BulkValidationError, NotFoundError
"""
