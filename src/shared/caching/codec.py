"""
Cache entry codec.

Wraps payloads in versioned, checksummed entries, decodes stored blobs
(upgrading legacy blobs written before versioning existed) and validates
entries for expiry, schema version and integrity.
"""

import json
import math
import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config import CacheSettings
from ..exceptions import CorruptionError

Clock = Callable[[], float]

REQUIRED_FIELDS = ('payload', 'schema_version', 'written_at', 'ttl', 'checksum')
TEMPORAL_FIELDS = ('start_time', 'end_time')


class CorruptionLevel(str, Enum):
    """How badly an entry failed validation."""
    NONE = "none"
    EXPIRED = "expired"
    VERSION = "version"
    CORRUPTED = "corrupted"


@dataclass
class CacheEntry:
    """Cache entry with metadata."""
    payload: Any
    schema_version: str
    written_at: float  # epoch seconds
    ttl: float  # seconds
    checksum: str
    source: str = "unified-cache"
    migrated: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payload': self.payload,
            'schema_version': self.schema_version,
            'written_at': datetime.fromtimestamp(self.written_at, timezone.utc).isoformat(),
            'ttl': self.ttl,
            'checksum': self.checksum,
            'source': self.source,
        }


@dataclass
class ValidationResult:
    """Outcome of validating a single entry."""
    valid: bool
    expired: bool
    version_valid: bool
    checksum_valid: bool
    age: float
    issues: List[str] = field(default_factory=list)

    @property
    def corruption_level(self) -> CorruptionLevel:
        if not self.checksum_valid:
            return CorruptionLevel.CORRUPTED
        if not self.version_valid:
            return CorruptionLevel.VERSION
        if self.expired:
            return CorruptionLevel.EXPIRED
        return CorruptionLevel.NONE

    @property
    def is_corruption(self) -> bool:
        """True when the entry failed for a reason other than age."""
        return not (self.version_valid and self.checksum_valid)


def checksum(payload: Any) -> str:
    """
    CRC-32 over key-sorted compact JSON.

    This detects accidental corruption only. It is not a cryptographic
    digest and offers no protection against deliberate tampering.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return format(zlib.crc32(canonical.encode('utf-8')) & 0xFFFFFFFF, '08x')


class CacheEntryCodec:
    """Encodes, decodes and validates cache entries."""

    def __init__(
        self,
        version: str = "1.0.0",
        short_ttl: float = 5 * 60,
        long_ttl: float = 7 * 24 * 60 * 60,
        default_ttl: float = 24 * 60 * 60,
        future_tolerance: float = 60.0,
        clock: Optional[Clock] = None
    ):
        self.version = version
        self.short_ttl = short_ttl
        self.long_ttl = long_ttl
        self.default_ttl = default_ttl
        self.future_tolerance = future_tolerance
        self.clock = clock or time.time

    @classmethod
    def from_settings(cls, settings: CacheSettings, clock: Optional[Clock] = None) -> 'CacheEntryCodec':
        return cls(
            version=settings.cache_schema_version,
            short_ttl=settings.cache_short_ttl,
            long_ttl=settings.cache_long_ttl,
            default_ttl=settings.cache_default_ttl,
            future_tolerance=settings.cache_future_tolerance,
            clock=clock
        )

    def default_ttl_for(self, payload: Any) -> float:
        """
        Pick a TTL from the payload shape.

        Lists holding at least one time-windowed record get the short TTL,
        other lists the long TTL, anything else the default.
        """
        if isinstance(payload, list):
            for item in payload:
                if isinstance(item, dict) and any(item.get(f) for f in TEMPORAL_FIELDS):
                    return self.short_ttl
            return self.long_ttl
        return self.default_ttl

    def encode(
        self,
        payload: Any,
        ttl: Optional[float] = None,
        version: Optional[str] = None,
        source: Optional[str] = None
    ) -> CacheEntry:
        """
        Wrap a payload in a new entry.

        Raises:
            TypeError: If the payload is not JSON-serializable (bytes included).
        """
        return CacheEntry(
            payload=payload,
            schema_version=version or self.version,
            written_at=self.clock(),
            ttl=ttl if ttl is not None else self.default_ttl_for(payload),
            checksum=checksum(payload),
            source=source or "unified-cache"
        )

    def serialize(self, entry: CacheEntry) -> bytes:
        return json.dumps(entry.to_dict(), separators=(',', ':')).encode('utf-8')

    def decode(self, raw: Union[bytes, str]) -> CacheEntry:
        """
        Decode a stored blob.

        Raises:
            CorruptionError: If the blob is unreadable or a versioned blob
                is missing fields.
        """
        try:
            if isinstance(raw, bytes):
                raw = raw.decode('utf-8')
            blob = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise CorruptionError(f"Unreadable cache blob: {e}")

        if not isinstance(blob, dict) or 'schema_version' not in blob:
            return self.migrate(blob)

        missing = [f for f in REQUIRED_FIELDS if f not in blob]
        if missing:
            raise CorruptionError(f"Cache entry missing fields: {', '.join(missing)}")

        try:
            entry = CacheEntry(
                payload=blob['payload'],
                schema_version=str(blob['schema_version']),
                written_at=_parse_timestamp(blob['written_at']),
                ttl=float(blob['ttl']),
                checksum=str(blob['checksum']),
                source=blob.get('source', "unified-cache")
            )
        except (TypeError, ValueError) as e:
            raise CorruptionError(f"Malformed cache entry: {e}")

        # NaN or infinite values would never expire
        if not (math.isfinite(entry.written_at) and math.isfinite(entry.ttl)):
            raise CorruptionError("Cache entry has an invalid timestamp or ttl")
        return entry

    def migrate(self, blob: Any) -> CacheEntry:
        """Upgrade a legacy blob to the current version. One-way."""
        payload = blob['data'] if isinstance(blob, dict) and 'data' in blob else blob
        entry = self.encode(payload, source="migration")
        entry.migrated = True
        return entry

    def validate(self, entry: CacheEntry) -> ValidationResult:
        issues = []
        age = self.clock() - entry.written_at

        expired = age > entry.ttl
        if expired:
            issues.append(f"Cache entry expired (age: {age:.0f}s, ttl: {entry.ttl:.0f}s)")
        elif age < -self.future_tolerance:
            expired = True
            issues.append("Cache entry has future timestamp")

        version_valid = entry.schema_version == self.version
        if not version_valid:
            issues.append(f"Version mismatch: {entry.schema_version} != {self.version}")

        checksum_valid = checksum(entry.payload) == entry.checksum
        if not checksum_valid:
            issues.append("Checksum mismatch - data may be corrupted")

        return ValidationResult(
            valid=not expired and version_valid and checksum_valid,
            expired=expired,
            version_valid=version_valid,
            checksum_valid=checksum_valid,
            age=age,
            issues=issues
        )

    def needs_refresh(self, entry: CacheEntry, threshold: float = 0.8) -> bool:
        """True when the entry is invalid or past ``threshold`` of its TTL."""
        result = self.validate(entry)
        if not result.valid:
            return True
        return result.age > entry.ttl * threshold

    def health_metrics(self, entries: Iterable[CacheEntry]) -> Dict[str, Any]:
        """Summarize the validity of a set of entries."""
        metrics = {
            'total_entries': 0,
            'valid_entries': 0,
            'expired_entries': 0,
            'version_mismatches': 0,
            'integrity_failures': 0,
            'average_age': 0.0,
        }
        total_age = 0.0
        for entry in entries:
            result = self.validate(entry)
            metrics['total_entries'] += 1
            total_age += result.age
            if result.valid:
                metrics['valid_entries'] += 1
            if result.expired:
                metrics['expired_entries'] += 1
            if not result.version_valid:
                metrics['version_mismatches'] += 1
            if not result.checksum_valid:
                metrics['integrity_failures'] += 1

        if metrics['total_entries']:
            metrics['average_age'] = total_age / metrics['total_entries']
        return metrics


def _parse_timestamp(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
