# src/dynaplan/utils.py
"""
Utility functions for validation and logging
"""

import re
import logging
from typing import Dict, Any
from .errors import ValidationError


def validate_table_name(table: str) -> str:
    """
    Validate a DynamoDB table or index name
    Allows alphanumeric, underscore, hyphen and dot, 3 to 255 characters
    """
    if not isinstance(table, str) or not re.match(r'^[a-zA-Z0-9_.-]{3,255}$', table):
        raise ValidationError(
            f"Invalid table name: '{table}'. Use 3-255 characters of alphanumeric, underscore, hyphen or dot."
        )
    return table


def validate_attribute_name(attribute: str) -> str:
    """Attribute names are sent through placeholders, so only emptiness is rejected"""
    if not isinstance(attribute, str) or not attribute:
        raise ValidationError(f"Invalid attribute name: {attribute!r}")
    return attribute


def validate_attributes(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate all attribute names in data dictionary
    """
    for key in data.keys():
        validate_attribute_name(key)
    return data


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Setup logger with consistent format"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers to avoid duplication in multiprocess scenarios
    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def chunked(items, size: int):
    """Yield successive lists of at most `size` items"""
    for i in range(0, len(items), size):
        yield items[i:i + size]
