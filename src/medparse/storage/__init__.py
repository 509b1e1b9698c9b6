"""Storage layer for the health document parser.

Page images are published through an `ObjectStore`; the local
implementation writes files that the web app serves under
`/api/static/uploads`.
"""

from .object_store import (
    KEY_PATTERN,
    LocalObjectStore,
    ObjectStore,
    key_from_url,
    validate_key,
)

__all__ = [
    "KEY_PATTERN",
    "LocalObjectStore",
    "ObjectStore",
    "key_from_url",
    "validate_key",
]
