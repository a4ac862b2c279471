import threading
import time

import pytest
from scrapy.exceptions import DropItem

from noon_scraper.coordination import ItemChannel
from noon_scraper.exceptions import StreamError
from noon_scraper.stream import Flow, Outcome


class Collect:
    def __init__(self):
        self.items = []
        self.closed = False

    def process_item(self, item):
        self.items.append(item)

    def close(self):
        self.closed = True


class SlowDouble:
    def process_item(self, item):
        time.sleep(0.001 * (item % 3))
        return item * 2


class DropOdd:
    def process_item(self, item):
        if item % 2:
            raise DropItem("odd")
        return item


class Explode:
    def process_item(self, item):
        if item == 3:
            raise KeyError("boom")
        return item


def test_flow_preserves_arrival_order():
    sink = Collect()
    flow = Flow(range(50)).via(SlowDouble()).to(sink)
    assert flow.join(5)
    assert sink.items == [i * 2 for i in range(50)]
    assert sink.closed


def test_dropped_items_are_counted_as_skipped():
    sink = Collect()
    flow = Flow(range(10)).via(DropOdd()).to(sink)
    flow.join(5)
    assert sink.items == [0, 2, 4, 6, 8]
    assert flow.outcomes["DropOdd"][Outcome.SKIPPED] == 5
    assert flow.outcomes["DropOdd"][Outcome.PASSED] == 5
    assert flow.outcomes["Collect"][Outcome.PASSED] == 5


def test_stage_failure_drains_and_is_raised_on_join():
    sink = Collect()
    flow = Flow([1, 2, 3, 4]).via(Explode()).to(sink)
    with pytest.raises(StreamError) as excinfo:
        flow.join(5)
    assert isinstance(excinfo.value.__cause__, KeyError)
    assert sink.items == [1, 2, 4]
    assert sink.closed
    assert flow.outcomes["Explode"][Outcome.FAILED] == 1


def test_flow_waits_for_channel_close():
    channel = ItemChannel()
    sink = Collect()
    flow = Flow(channel).to(sink)
    channel.send("a")
    assert not flow.join(0.05)
    assert flow.running

    feeder = threading.Thread(target=lambda: (channel.send("b"), channel.close()))
    feeder.start()
    assert flow.join(5)
    feeder.join()
    assert sink.items == ["a", "b"]


def test_flow_cannot_start_twice():
    flow = Flow([]).to(Collect())
    with pytest.raises(RuntimeError):
        flow.start()
    flow.join(5)
