"""Exception taxonomy shared by providers, the aggregator and the download proxy."""

from __future__ import annotations


class SubtitleRelayError(RuntimeError):
    """Base class for every domain failure."""


class ProviderUnavailable(SubtitleRelayError):
    """A source could not be reached or its response could not be parsed."""


class UpstreamAuthExpired(SubtitleRelayError):
    """An authenticated source answered with a login page instead of content."""


class NoMatch(SubtitleRelayError):
    """Nothing relevant was found."""


class UnsupportedContainer(SubtitleRelayError):
    """Downloaded bytes are neither a known archive nor subtitle text."""


class ArchiveCorrupt(SubtitleRelayError):
    """An archive could not be opened or an entry could not be read."""


class RateLimited(SubtitleRelayError):
    def __init__(self, client_key: str, retry_after: float = 0.0) -> None:
        super().__init__(f"rate limit exceeded for {client_key}")
        self.client_key = client_key
        self.retry_after = retry_after


__all__ = [
    "ArchiveCorrupt",
    "NoMatch",
    "ProviderUnavailable",
    "RateLimited",
    "SubtitleRelayError",
    "UnsupportedContainer",
    "UpstreamAuthExpired",
]
