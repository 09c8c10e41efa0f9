import copy
import threading
from dataclasses import dataclass, field

from elevmap.threadsafe import ThreadSafeDataWrapper


@dataclass
class _Settings:
    name: str = ""
    count: int = 0
    values: dict = field(default_factory=dict)


def test_set_then_get_round_trip():
    wrapper = ThreadSafeDataWrapper(_Settings())
    wrapper.set(_Settings(name="laser", count=3))
    assert wrapper.get() == _Settings(name="laser", count=3)


def test_get_returns_independent_copy():
    wrapper = ThreadSafeDataWrapper(_Settings(values={"a": 1.0}))
    snapshot = wrapper.get()
    snapshot.values["a"] = 9.0
    snapshot.count = 7
    assert wrapper.get() == _Settings(values={"a": 1.0})


def test_set_stores_copy():
    settings = _Settings(values={"a": 1.0})
    wrapper = ThreadSafeDataWrapper(_Settings())
    wrapper.set(settings)
    settings.values["a"] = 2.0
    assert wrapper.get().values == {"a": 1.0}


def test_write_changes_in_place():
    wrapper = ThreadSafeDataWrapper(_Settings())
    with wrapper.write() as data:
        data.name = "stereo"
    assert wrapper.get().name == "stereo"


def test_concurrent_writes_are_serialised():
    wrapper = ThreadSafeDataWrapper(_Settings())

    def increment():
        for _ in range(500):
            with wrapper.write() as data:
                data.count += 1

    threads = [threading.Thread(target=increment) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert wrapper.get().count == 8 * 500


def test_copy_is_independent():
    wrapper = ThreadSafeDataWrapper(_Settings(count=2))
    duplicate = copy.copy(wrapper)
    duplicate.set(_Settings(count=5))
    assert wrapper.get().count == 2
    assert duplicate.get().count == 5