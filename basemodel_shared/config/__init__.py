"""
Configuration module: Settings, logging, constants.
"""

from basemodel_shared.config.settings import settings, get_settings
from basemodel_shared.config.logging import get_logger, setup_logging
from basemodel_shared.config.constants import (
    Cardinality,
    ErrorKeys,
    ErrorMessages,
    Limits,
    SqlState,
)

__all__ = [
    # settings
    "settings",
    "get_settings",
    # logging
    "get_logger",
    "setup_logging",
    # constants
    "Cardinality",
    "ErrorKeys",
    "ErrorMessages",
    "Limits",
    "SqlState",
]
