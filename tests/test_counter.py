import asyncio

import pytest

from storefront_server.counter import ClickCounter
from storefront_server.errors import NotReady
from storefront_server.models import NoticeKind
from storefront_server.store import counter_path

from .conftest import APP_ID, ONE_SHOT


async def test_missing_counter_is_created_at_zero(store, memory_store, notices):
    counter = ClickCounter(store, APP_ID, notices, ONE_SHOT)
    counter.start()
    await asyncio.sleep(0.01)

    doc = await memory_store.get(counter_path(APP_ID))
    assert doc.data == {"count": 0}
    assert counter.count == 0
    counter.teardown()


async def test_increment_follows_snapshot(store, memory_store, notices):
    await memory_store.set(counter_path(APP_ID), {"count": 41})
    counter = ClickCounter(store, APP_ID, notices, ONE_SHOT)
    counter.start()
    assert counter.count == 41

    assert await counter.increment() == 42
    assert await counter.increment() == 43

    assert counter.count == 43
    counter.teardown()


async def test_increment_failure_is_noticed(store, memory_store, notices):
    await memory_store.set(counter_path(APP_ID), {"count": 1})
    counter = ClickCounter(store, APP_ID, notices, ONE_SHOT)
    counter.start()
    memory_store.fail("update")

    assert await counter.increment() is None
    assert counter.count == 1
    assert notices.last.kind == NoticeKind.ERROR
    counter.teardown()


async def test_increment_before_start_is_not_ready(store, notices):
    counter = ClickCounter(store, APP_ID, notices, ONE_SHOT)

    with pytest.raises(NotReady):
        await counter.increment()


async def test_unreadable_value_keeps_last_count(store, memory_store, notices):
    await memory_store.set(counter_path(APP_ID), {"count": 5})
    counter = ClickCounter(store, APP_ID, notices, ONE_SHOT)
    counter.start()

    await memory_store.set(counter_path(APP_ID), {"count": "lots"})

    assert counter.count == 5
    assert not counter.stale
    counter.teardown()
