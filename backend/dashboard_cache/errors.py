"""Error kinds raised by the market cache stores and refresh sources."""


class CacheError(Exception):
    """Base class for all cache errors."""


class NotFound(CacheError):
    """Requested row does not exist."""


class StaleWrite(CacheError):
    """Incoming timestamp is older than the one already stored for a source."""

    def __init__(self, source, incoming, stored):
        self.source = source
        self.incoming = incoming
        self.stored = stored
        super().__init__(
            f"Stale write from {source}: {incoming.isoformat()} is older than "
            f"stored {stored.isoformat()}"
        )


class InvalidQuarterFormat(CacheError):
    """Quarter key is not of the form YYYYQn with n in 1-4."""

    def __init__(self, quarter):
        self.quarter = quarter
        super().__init__(f"Invalid quarter format: {quarter!r} (expected e.g. '2024Q1')")


class DuplicateYear(CacheError):
    """A historical row for this year has already been finalized."""

    def __init__(self, year):
        self.year = year
        super().__init__(f"Historical data for {year} already exists")


class ScrapeFailure(CacheError):
    """Upstream source unreachable, timed out or returned unparseable data."""


class ValidationFailure(CacheError):
    """Value is missing, negative or not a number where one is required."""
