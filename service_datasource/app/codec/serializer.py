"""
Cache text codec for documents.

Documents are cached as JSON. Tagged values are written as sentinel strings:

    $$Timestamp$$:<seconds>:<nanoseconds>
    $$GeoPoint$$:<latitude>:<longitude>
    $$DocumentReference$$:<path>

A plain string that already looks like a sentinel cannot be told apart from a
tagged value once cached, so encoding rejects it instead of guessing later.
"""

import json
import re
from typing import Any, Dict, Optional, Set

from shared.errors import SerializationError
from .values import DocumentReference, GeoPoint, Timestamp

TIMESTAMP_TAG = "$$Timestamp$$"
GEOPOINT_TAG = "$$GeoPoint$$"
REFERENCE_TAG = "$$DocumentReference$$"

SENTINEL_PATTERN = re.compile(r"^\$\$(Timestamp|GeoPoint|DocumentReference)\$\$:")


def is_sentinel(value: Any) -> bool:
    """Whether a string is in the reserved sentinel format."""
    return isinstance(value, str) and SENTINEL_PATTERN.match(value) is not None


def encode_tagged(value: Any) -> Optional[str]:
    """Sentinel string for a tagged value, None for anything else."""
    if isinstance(value, Timestamp):
        return f"{TIMESTAMP_TAG}:{value.seconds}:{value.nanoseconds}"
    if isinstance(value, GeoPoint):
        return f"{GEOPOINT_TAG}:{value.latitude!r}:{value.longitude!r}"
    if isinstance(value, DocumentReference):
        return f"{REFERENCE_TAG}:{value.path}"
    return None


def decode_tagged(text: str, store: Any = None) -> Any:
    """Rebuild the tagged value a sentinel string stands for."""
    tag, _, payload = text.partition(":")
    try:
        if tag == TIMESTAMP_TAG:
            seconds, nanoseconds = payload.split(":")
            return Timestamp(int(seconds), int(nanoseconds))
        if tag == GEOPOINT_TAG:
            latitude, longitude = payload.split(":")
            return GeoPoint(float(latitude), float(longitude))
        if tag == REFERENCE_TAG:
            return DocumentReference(payload, store=store)
    except (TypeError, ValueError) as exc:
        raise SerializationError(
            f"Malformed {tag} value in cache",
            details={"value": text, "error": str(exc)}
        ) from exc
    # SENTINEL_PATTERN only admits the three tags above
    raise SerializationError("Unknown tagged value", details={"value": text})


class DocumentCodec:
    """Encode documents to cache text and back.

    Decoding is bound to a document store so that references come back able
    to resolve through it.
    """

    def __init__(self, store: Any = None):
        self.store = store

    def encode(self, value: Any) -> str:
        """Encode a document (or any nested structure) to JSON text."""
        prepared = self.to_cache_value(value)
        try:
            return json.dumps(prepared, allow_nan=False, separators=(",", ":"))
        except ValueError as exc:
            raise SerializationError("Value is not representable as JSON", details={"error": str(exc)}) from exc

    def decode(self, text: Any) -> Any:
        """Decode JSON text produced by ``encode``."""
        if isinstance(text, (bytes, bytearray)):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise SerializationError("Cached value is not UTF-8", details={"error": str(exc)}) from exc
        if not isinstance(text, str):
            raise SerializationError("Cached value must be text", details={"type": type(text).__name__})
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SerializationError("Cached value is not valid JSON", details={"error": str(exc)}) from exc
        return self.from_cache_value(raw)

    def to_cache_value(self, value: Any) -> Any:
        """Replace tagged values with sentinels, checking everything else is JSON-native."""
        return self._replace(value, "$", set())

    def from_cache_value(self, value: Any) -> Any:
        """Replace sentinel strings with tagged values."""
        if isinstance(value, str):
            return decode_tagged(value, self.store) if is_sentinel(value) else value
        if isinstance(value, dict):
            return {key: self.from_cache_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.from_cache_value(item) for item in value]
        return value

    def _replace(self, value: Any, location: str, active: Set[int]) -> Any:
        tagged = encode_tagged(value)
        if tagged is not None:
            return tagged

        if isinstance(value, str):
            if is_sentinel(value):
                raise SerializationError(
                    "String collides with the reserved tagged value format",
                    details={"location": location, "value": value}
                )
            return value

        if value is None or isinstance(value, (bool, int, float)):
            return value

        if isinstance(value, (dict, list, tuple)):
            marker = id(value)
            if marker in active:
                raise SerializationError("Cyclic structure cannot be cached", details={"location": location})
            active.add(marker)
            try:
                if isinstance(value, dict):
                    return self._replace_mapping(value, location, active)
                return [self._replace(item, f"{location}[{index}]", active) for index, item in enumerate(value)]
            finally:
                active.discard(marker)

        raise SerializationError(
            "Unsupported value kind",
            details={"location": location, "type": type(value).__name__}
        )

    def _replace_mapping(self, value: Dict[Any, Any], location: str, active: Set[int]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    "Document keys must be strings",
                    details={"location": location, "key": repr(key)}
                )
            result[key] = self._replace(item, f"{location}.{key}", active)
        return result
