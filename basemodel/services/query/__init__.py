"""
Query Services - list/show queries for registered models.

Provides:
- QueryParameters: structured query, parsed from HTTP query parameters
- QueryAssembler: filters, searches, sorting, pagination, includes
- Page: one page of results
- FieldDecryptor: decrypted expressions for encrypted columns
"""

from .assembler import FieldDecryptor, Page, QueryAssembler, entity_to_dict
from .parameters import QueryParameters, is_filterable

__all__ = [
    "FieldDecryptor",
    "Page",
    "QueryAssembler",
    "entity_to_dict",
    "QueryParameters",
    "is_filterable",
]
