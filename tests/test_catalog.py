import asyncio

import pytest

from storefront_server.catalog import CatalogCache
from storefront_server.mirror import SnapshotMirror
from storefront_server.models import Document, NoticeKind
from storefront_server.policy import GuardedStore, RetryPolicy
from storefront_server.store import Subscription, products_path

from .conftest import APP_ID, make_product, seed_product


class ScriptedStore:
    """Store double that hands its callbacks to the test."""

    def __init__(self) -> None:
        self.subscriptions: list[tuple[str, object, object]] = []
        self.unsubscribed = 0

    def subscribe(self, path, on_snapshot, on_error):
        self.subscriptions.append((path, on_snapshot, on_error))

        def cancel():
            self.unsubscribed += 1

        return Subscription(path, cancel)

    def deliver(self, docs, index=-1):
        self.subscriptions[index][1](docs)

    def fail(self, err, index=-1):
        self.subscriptions[index][2](err)


def doc(product_id, price=1000):
    return Document(id=product_id, data={"name": product_id, "price": price})


async def test_snapshot_replaces_catalog(catalog, memory_store):
    await seed_product(memory_store, make_product("P1"))
    await seed_product(memory_store, make_product("P2"))
    assert [p.id for p in catalog.list()] == ["P1", "P2"]

    await memory_store.delete(f"{products_path(APP_ID)}/P1")

    assert [p.id for p in catalog.list()] == ["P2"]
    assert catalog.find_by_id("P1") is None
    assert catalog.find_by_id("P2").name == "Product P2"


async def test_malformed_products_are_skipped(notices):
    store = ScriptedStore()
    cache = CatalogCache(store, notices)
    cache.activate("products")

    cache.apply([doc("P1"), Document(id="bad", data={"name": "No price"})])

    assert [p.id for p in cache.list()] == ["P1"]


async def test_late_notification_after_teardown_is_ignored(notices):
    store = ScriptedStore()
    cache = CatalogCache(store, notices)
    cache.activate("products")
    store.deliver([doc("P1")])

    cache.teardown()
    store.deliver([doc("P1"), doc("P2")])

    assert [p.id for p in cache.list()] == ["P1"]
    assert store.unsubscribed == 1


async def test_teardown_unsubscribes_once(notices):
    store = ScriptedStore()
    cache = CatalogCache(store, notices)
    cache.activate("products")

    cache.teardown()
    cache.teardown()

    assert store.unsubscribed == 1


def test_subscription_guards_double_unsubscribe():
    calls = []
    subscription = Subscription("products", lambda: calls.append(1))

    subscription.unsubscribe()
    subscription.unsubscribe()

    assert calls == [1]
    assert not subscription.active


async def test_error_keeps_last_snapshot_and_resubscribes(notices):
    store = ScriptedStore()
    cache = CatalogCache(
        GuardedStore(store), notices, RetryPolicy(attempts=3, backoff_initial=0.01)
    )
    cache.activate("products")
    store.deliver([doc("P1")])

    store.fail(RuntimeError("permission denied"))

    assert cache.stale
    assert [p.id for p in cache.list()] == ["P1"]
    assert notices.last.kind == NoticeKind.WARNING
    assert store.unsubscribed == 1

    await asyncio.sleep(0.05)
    assert len(store.subscriptions) == 2
    store.deliver([doc("P1"), doc("P2")])
    assert not cache.stale
    assert len(cache) == 2
    cache.teardown()


async def test_resubscribe_budget_is_bounded(notices):
    store = ScriptedStore()
    cache = CatalogCache(store, notices, RetryPolicy(attempts=2, backoff_initial=0.01))
    cache.activate("products")

    store.fail(RuntimeError("offline"))
    await asyncio.sleep(0.05)
    store.fail(RuntimeError("offline"))
    await asyncio.sleep(0.05)

    assert len(store.subscriptions) == 2
    assert cache.stale
    assert notices.last.kind == NoticeKind.ERROR
    cache.teardown()


def test_mirror_requires_apply():
    with pytest.raises(TypeError):
        SnapshotMirror(ScriptedStore(), print)
