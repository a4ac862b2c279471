"""A small staged stream running each stage on its own worker thread.

Stages are objects with a Scrapy pipeline-like ``process_item(item)`` which
returns the item for the next stage or raises ``DropItem`` to skip it. Stages
are linked by FIFO queues and each one has exactly one worker, so an item is
fully handled by a stage before the next one is picked up and output order is
arrival order.
"""
import enum
import logging
import queue
import threading
from collections import Counter

from scrapy.exceptions import DropItem

from noon_scraper.exceptions import StreamError

logger = logging.getLogger(__name__)

_END = object()


class Outcome(enum.Enum):
    PASSED = "passed"
    SKIPPED = "skipped"
    FAILED = "failed"


def _stage_name(stage):
    return getattr(stage, "name", None) or type(stage).__name__


class Flow:

    def __init__(self, source):
        self.source = source
        self.stages = []
        self.outcomes = {}
        self.errors = []
        self._threads = []
        self._lock = threading.Lock()

    def via(self, stage):
        self.stages.append(stage)
        return self

    def to(self, sink):
        """Attach the terminal stage and start the workers."""
        self.stages.append(sink)
        self.start()
        return self

    def start(self):
        if self._threads:
            raise RuntimeError("flow already started")
        if not self.stages:
            raise ValueError("flow has no stages")
        queues = [queue.Queue() for _ in self.stages]
        self._spawn("source", self._pump, queues[0])
        for i, stage in enumerate(self.stages):
            outbox = queues[i + 1] if i + 1 < len(queues) else None
            self.outcomes[_stage_name(stage)] = Counter()
            self._spawn(_stage_name(stage), self._work, stage, queues[i], outbox)

    def _spawn(self, name, target, *args):
        thread = threading.Thread(target=target, args=args, name="stream-%s" % name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _pump(self, outbox):
        try:
            for item in self.source:
                outbox.put(item)
        except Exception as e:
            logger.exception("Stream source failed")
            self._record_error(e)
        finally:
            outbox.put(_END)

    def _work(self, stage, inbox, outbox):
        name = _stage_name(stage)
        counts = self.outcomes[name]
        while True:
            item = inbox.get()
            if item is _END:
                break
            try:
                result = stage.process_item(item)
            except DropItem:
                counts[Outcome.SKIPPED] += 1
                continue
            except Exception as e:
                logger.exception("Stage %s failed on %r", name, item)
                counts[Outcome.FAILED] += 1
                self._record_error(e)
                continue
            counts[Outcome.PASSED] += 1
            if outbox is not None:
                outbox.put(result)
        close = getattr(stage, "close", None)
        try:
            if close is not None:
                close()
        except Exception as e:
            logger.exception("Closing stage %s failed", name)
            self._record_error(e)
        finally:
            if outbox is not None:
                outbox.put(_END)

    def _record_error(self, error):
        with self._lock:
            self.errors.append(error)

    def join(self, timeout=None):
        """Wait for the stream to drain. Raises StreamError if any stage failed."""
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                return False
        if self.errors:
            raise StreamError("%d stream error(s), first: %r" % (len(self.errors), self.errors[0])) \
                from self.errors[0]
        return True

    @property
    def running(self):
        return any(t.is_alive() for t in self._threads)
