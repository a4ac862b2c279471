"""Project exceptions. Scrapy's own (DropItem, IgnoreRequest) are used where they fit."""


class ExtractionError(ValueError):
    """A text pattern was not found in the scraped content."""


class CompletionError(RuntimeError):
    """The channel was asked to close while detail visits may still be in flight."""


class ChannelClosedError(RuntimeError):
    """An item was sent on a channel that has already been closed."""


class StreamError(RuntimeError):
    """A stream stage failed with an unexpected exception."""
