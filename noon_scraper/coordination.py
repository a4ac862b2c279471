"""Bookkeeping shared between the list walk, the detail visits and the stream.

Detail visits are dispatched through a :class:`VisitGroup`, which counts them in
an :class:`InFlightCounter` before the request leaves the spider and hands out a
:class:`VisitTicket` that must be released when the visit ends, whatever the
outcome. The :class:`CompletionCoordinator` closes the :class:`ItemChannel`
only once the list walk is over and every ticket has been released.

Everything here is thread-safe: visits complete on the reactor thread while
the stream consumes the channel on worker threads.
"""
import enum
import logging
import queue
import threading
from collections import Counter

from noon_scraper.exceptions import ChannelClosedError, CompletionError

logger = logging.getLogger(__name__)


class InFlightCounter:

    def __init__(self):
        self._value = 0
        self._cond = threading.Condition()

    @property
    def value(self):
        with self._cond:
            return self._value

    def increment(self):
        with self._cond:
            self._value += 1
            return self._value

    def decrement(self):
        with self._cond:
            if self._value <= 0:
                raise CompletionError("in-flight counter decremented below zero")
            self._value -= 1
            if self._value == 0:
                self._cond.notify_all()
            return self._value

    def wait_zero(self, timeout=None):
        """Block until the count is zero. Returns False if ``timeout`` expired first."""
        with self._cond:
            return self._cond.wait_for(lambda: self._value == 0, timeout=timeout)


class VisitOutcome(enum.Enum):
    EMITTED = "emitted"    # a field bag went onto the channel
    EMPTY = "empty"        # page loaded but had nothing to extract
    FAILED = "failed"      # fetch abandoned after retries
    DROPPED = "dropped"    # request never reached the downloader


class VisitTicket:
    """Completion handle of one dispatched visit.

    Released at most once; later releases are ignored so that every exit path
    of a visit can release without double counting.
    """

    def __init__(self, group, url):
        self.group = group
        self.url = url
        self.outcome = None
        self._lock = threading.Lock()

    @property
    def released(self):
        return self.outcome is not None

    def release(self, outcome):
        with self._lock:
            if self.outcome is not None:
                return False
            self.outcome = outcome
        self.group._finish(self)
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # visits that end without an explicit outcome produced nothing
        self.release(VisitOutcome.FAILED if exc_type else VisitOutcome.EMPTY)
        return False


class VisitGroup:
    """Spawn/join primitive for detail visits."""

    def __init__(self, counter=None):
        self.counter = counter or InFlightCounter()
        self.outcomes = Counter()
        self._lock = threading.Lock()

    def dispatch(self, url):
        ticket = VisitTicket(self, url)
        self.counter.increment()
        return ticket

    def _finish(self, ticket):
        with self._lock:
            self.outcomes[ticket.outcome] += 1
        self.counter.decrement()

    def join(self, timeout=None):
        return self.counter.wait_zero(timeout=timeout)

    @property
    def pending(self):
        return self.counter.value


_CLOSED = object()


class ItemChannel:
    """Unbounded FIFO between the spider and the stream.

    Iterating yields items until the channel is closed and drained.
    """

    def __init__(self):
        self._queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self.sent = 0

    @property
    def closed(self):
        return self._closed

    def send(self, item):
        with self._lock:
            if self._closed:
                raise ChannelClosedError("send on closed channel")
            self._queue.put(item)
            self.sent += 1

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def __iter__(self):
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


class CompletionCoordinator:

    def __init__(self, group, channel):
        self.group = group
        self.channel = channel
        self._walked = threading.Event()

    def list_walk_finished(self):
        self._walked.set()

    @property
    def list_walk_done(self):
        return self._walked.is_set()

    @property
    def done(self):
        return self.list_walk_done and self.group.pending == 0

    def wait(self, timeout=None):
        """Wait for the list walk and then for every dispatched visit."""
        if not self._walked.wait(timeout):
            return False
        # no dispatch happens once the walk is over, so zero stays zero
        return self.group.join(timeout)

    def close(self):
        if not self.list_walk_done:
            raise CompletionError("list walk still running")
        pending = self.group.pending
        if pending:
            raise CompletionError("%d detail visits still in flight" % pending)
        logger.debug("All visits completed, closing channel after %d items", self.channel.sent)
        self.channel.close()

    def wait_and_close(self, timeout=None):
        if not self.wait(timeout):
            raise CompletionError(
                "gave up waiting for %d in-flight visits" % self.group.pending
            )
        self.close()
