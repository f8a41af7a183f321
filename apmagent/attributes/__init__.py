"""Attribute filtering and routing."""

from apmagent.attributes.container import Attributes
from apmagent.attributes.filter import AttributeFilter, EXACT_MATCH, NO_MATCH

__all__ = [
    "AttributeFilter",
    "Attributes",
    "EXACT_MATCH",
    "NO_MATCH",
]
