from __future__ import annotations

import threading

import allure
import pytest

from ralph.engine.errors import StoreError, best_effort
from ralph.engine.events import EventChannel

pytestmark = [
    allure.epic("Orchestration Engine"),
    allure.feature("Event Channels"),
]


def test_send_drops_when_full_without_blocking() -> None:
    channel: EventChannel[int] = EventChannel(2, name="test")

    assert channel.send(1) is True
    assert channel.send(2) is True
    assert channel.send(3) is False

    assert channel.dropped == 1
    assert channel.drain() == [1, 2]


def test_iteration_ends_after_close_and_drain() -> None:
    channel: EventChannel[str] = EventChannel(10)
    channel.send("a")
    channel.send("b")
    channel.close()
    channel.close()

    assert list(channel) == ["a", "b"]
    assert channel.send("late") is False
    assert channel.closed is True


def test_consumer_thread_receives_everything_in_order() -> None:
    channel: EventChannel[int] = EventChannel(100)
    received: list[int] = []
    consumer = threading.Thread(target=lambda: received.extend(channel), daemon=True)
    consumer.start()

    for value in range(50):
        channel.send(value)
    channel.close()
    consumer.join(timeout=5)

    assert received == list(range(50))


def test_receive_times_out_and_returns_none() -> None:
    channel: EventChannel[int] = EventChannel(1)

    assert channel.receive(timeout=0.01) is None
    channel.send(7)
    assert channel.receive(timeout=0.01) == 7


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EventChannel(0)


def test_best_effort_swallows_store_errors_only() -> None:
    def _store_failure() -> None:
        raise StoreError("locked")

    def _bug() -> None:
        raise KeyError("oops")

    assert best_effort("write", _store_failure) is False
    assert best_effort("write", lambda: None) is True
    with pytest.raises(KeyError):
        best_effort("write", _bug)
