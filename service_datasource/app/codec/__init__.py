"""
Codec package.

Tagged value types and the text codec used to put documents into a plain
string key-value cache and get them back unchanged.
"""

from .values import DocumentReference, GeoPoint, Timestamp
from .serializer import DocumentCodec, SENTINEL_PATTERN, is_sentinel

__all__ = [
    "DocumentCodec",
    "DocumentReference",
    "GeoPoint",
    "SENTINEL_PATTERN",
    "Timestamp",
    "is_sentinel",
]
