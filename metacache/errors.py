"""Exception hierarchy shared by the cache engine and its CLI."""

from __future__ import annotations


class MetacacheError(RuntimeError):
    """Base class for every error raised by Metacache."""


class StoreUnavailableError(MetacacheError):
    """The store file is missing, unwritable or stayed locked after retries."""


class SchemaInvalidError(MetacacheError):
    """The store layout does not match the expected schema version."""


class MigrationFailedError(MetacacheError):
    """A schema migration step could not be completed."""


class InvalidVersionError(MetacacheError):
    """A rollback or migration target names a version that cannot be used."""


class CorruptedStoreError(MetacacheError):
    """The store failed an integrity check or is not a database."""


class ExtractionFailedError(MetacacheError):
    """Metadata extraction failed for a single file."""


class InvalidArgumentError(MetacacheError, ValueError):
    """A maintenance or dispatch parameter is out of range."""
