"""
Tagged value types.

Documents can hold three kinds of values that have no JSON counterpart:
timestamps with nanosecond precision, geographic points and references to
other documents. They are plain immutable values here so they compare by
content, whichever store or cache they came from.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
NANOS_PER_SECOND = 1_000_000_000


@dataclass(frozen=True, order=True)
class Timestamp:
    """A point in time as seconds and nanoseconds since the Unix epoch."""

    seconds: int
    nanoseconds: int = 0

    def __post_init__(self):
        for name in ("seconds", "nanoseconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"Timestamp {name} must be an int, got {type(value).__name__}")
        if not 0 <= self.nanoseconds < NANOS_PER_SECOND:
            raise ValueError(f"Timestamp nanoseconds out of range: {self.nanoseconds}")

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        """Build from a datetime; naive datetimes are taken as UTC."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - EPOCH
        return cls(delta.days * 86400 + delta.seconds, delta.microseconds * 1000)

    @classmethod
    def now(cls) -> "Timestamp":
        return cls.from_datetime(datetime.now(timezone.utc))

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime (microsecond precision)."""
        return EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanoseconds // 1000)


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in degrees."""

    latitude: float
    longitude: float

    def __post_init__(self):
        latitude = float(self.latitude)
        longitude = float(self.longitude)
        if math.isnan(latitude) or not -90.0 <= latitude <= 90.0:
            raise ValueError(f"Latitude must be within [-90, 90], got {self.latitude}")
        if math.isnan(longitude) or not -180.0 <= longitude <= 180.0:
            raise ValueError(f"Longitude must be within [-180, 180], got {self.longitude}")
        object.__setattr__(self, "latitude", latitude)
        object.__setattr__(self, "longitude", longitude)


@dataclass(frozen=True)
class DocumentReference:
    """Reference to another document by its store-relative path.

    ``store`` is the handle the reference resolves through. It does not take
    part in equality: two references to the same path are the same value.
    """

    path: str
    store: Optional[Any] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        segments = self.path.split("/") if isinstance(self.path, str) else []
        if len(segments) < 2 or len(segments) % 2 != 0 or not all(segments):
            raise ValueError(f"Document path must be '<collection>/<id>' pairs, got {self.path!r}")

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[1]

    @property
    def parent(self) -> str:
        """Path of the collection holding the referenced document."""
        return self.path.rsplit("/", 1)[0]

    async def get(self):
        """Fetch the referenced document snapshot from the bound store."""
        if self.store is None:
            raise RuntimeError(f"Reference {self.path!r} is not bound to a document store")
        return await self.store.collection(self.parent).get(self.id)
