"""Model descriptors, identifier parsing and the well-known model table."""

from ._types import GenerateParams, ModelDescriptor
from .catalog import CATALOG, get_descriptor, resolve_descriptor
from .parser import ParsedIdentifier, parse_identifier

__all__ = [
    "CATALOG",
    "GenerateParams",
    "ModelDescriptor",
    "ParsedIdentifier",
    "get_descriptor",
    "parse_identifier",
    "resolve_descriptor",
]
