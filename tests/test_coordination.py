import random
import threading
import time

import pytest

from noon_scraper.coordination import (
    CompletionCoordinator,
    InFlightCounter,
    ItemChannel,
    VisitGroup,
    VisitOutcome,
)
from noon_scraper.exceptions import ChannelClosedError, CompletionError


def test_counter_wait_zero():
    counter = InFlightCounter()
    assert counter.wait_zero(0)
    counter.increment()
    assert not counter.wait_zero(0.01)
    threading.Timer(0.01, counter.decrement).start()
    assert counter.wait_zero(5)
    with pytest.raises(CompletionError):
        counter.decrement()


def test_ticket_released_once():
    group = VisitGroup()
    ticket = group.dispatch("https://www.noon.com/uae-en/p/1")
    assert group.pending == 1
    assert ticket.release(VisitOutcome.EMITTED)
    assert not ticket.release(VisitOutcome.FAILED)
    assert group.pending == 0
    assert ticket.outcome is VisitOutcome.EMITTED
    assert group.outcomes == {VisitOutcome.EMITTED: 1}


def test_ticket_context_releases_on_every_exit():
    group = VisitGroup()
    with group.dispatch("a"):
        pass
    with pytest.raises(ValueError):
        with group.dispatch("b"):
            raise ValueError
    with group.dispatch("c") as ticket:
        ticket.release(VisitOutcome.EMITTED)
    assert group.pending == 0
    assert group.outcomes == {
        VisitOutcome.EMPTY: 1,
        VisitOutcome.FAILED: 1,
        VisitOutcome.EMITTED: 1,
    }


def test_channel_iterates_until_closed():
    channel = ItemChannel()
    channel.send(1)
    channel.send(2)
    channel.close()
    channel.close()
    assert list(channel) == [1, 2]
    with pytest.raises(ChannelClosedError):
        channel.send(3)


def test_coordinator_refuses_early_close():
    group = VisitGroup()
    channel = ItemChannel()
    coordinator = CompletionCoordinator(group, channel)
    ticket = group.dispatch("a")
    with pytest.raises(CompletionError, match="list walk"):
        coordinator.close()
    coordinator.list_walk_finished()
    with pytest.raises(CompletionError, match="1 detail visits"):
        coordinator.close()
    assert not coordinator.wait(0.01)
    ticket.release(VisitOutcome.EMITTED)
    coordinator.wait_and_close(1)
    assert channel.closed


def test_coordinator_times_out():
    group = VisitGroup()
    coordinator = CompletionCoordinator(group, ItemChannel())
    group.dispatch("a")
    coordinator.list_walk_finished()
    with pytest.raises(CompletionError, match="gave up"):
        coordinator.wait_and_close(0.01)


class CheckedChannel(ItemChannel):

    def __init__(self, group):
        super().__init__()
        self.group = group
        self.pending_at_close = None

    def close(self):
        self.pending_at_close = self.group.pending
        super().close()


def test_channel_never_closed_while_visits_in_flight():
    group = VisitGroup()
    channel = CheckedChannel(group)
    coordinator = CompletionCoordinator(group, channel)
    urls = ["https://www.noon.com/uae-en/p/%d" % i for i in range(60)]
    late_sends = []
    received = []

    def visit(ticket, index):
        time.sleep(random.uniform(0, 0.02))
        with ticket:
            if index % 7 == 0:
                ticket.release(VisitOutcome.FAILED)
                return
            if channel.closed:
                late_sends.append(ticket.url)
            channel.send(ticket.url)
            ticket.release(VisitOutcome.EMITTED)

    def walk():
        for index, url in enumerate(urls):
            ticket = group.dispatch(url)
            threading.Thread(target=visit, args=(ticket, index)).start()
            if index % 20 == 19:
                time.sleep(0.005)
        coordinator.list_walk_finished()

    consumer = threading.Thread(target=lambda: received.extend(channel))
    consumer.start()
    threading.Thread(target=walk).start()

    coordinator.wait_and_close(10)
    consumer.join(10)

    expected = [url for i, url in enumerate(urls) if i % 7]
    assert channel.pending_at_close == 0
    assert not late_sends
    assert sorted(received) == sorted(expected)
    assert group.outcomes[VisitOutcome.EMITTED] == len(expected)
    assert group.outcomes[VisitOutcome.FAILED] == len(urls) - len(expected)
