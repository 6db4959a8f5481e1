from __future__ import annotations


class ExtractionError(Exception):
    """Base class for failures that end a channel extraction."""


class UnrecognizedChannelReference(ExtractionError):
    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Could not determine a valid channel identifier from {reference!r}."
        )
        self.reference = reference


class ListingError(ExtractionError):
    pass


class NoVideosFound(ListingError):
    def __init__(self, channel_id: str) -> None:
        super().__init__(f"No videos were found for channel {channel_id!r}.")
        self.channel_id = channel_id


class NoVideosMatchFilter(ExtractionError):
    def __init__(self, date_filter: str) -> None:
        super().__init__(
            f"No videos were found for this channel that match the date filter {date_filter!r}."
        )
        self.date_filter = date_filter


class ExtractionCancelled(Exception):
    """Raised when the requester cancelled the extraction. Never reported as a failure."""
