"""
Object layer: models, records and the query translator.
"""

from .model import ClientModel, Model, ServerModel
from .query import SEARCH_METHODS, Criterion, SearchMethod, compare, parse_key
from .record import Record

__all__ = [
    "SEARCH_METHODS",
    "ClientModel",
    "Criterion",
    "Model",
    "Record",
    "SearchMethod",
    "ServerModel",
    "compare",
    "parse_key",
]
