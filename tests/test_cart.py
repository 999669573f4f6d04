import pytest

from storefront_server.cart import CartStoreAdapter
from storefront_server.errors import NotReady
from storefront_server.models import ClearOutcome, NoticeKind
from storefront_server.notices import answer
from storefront_server.store import cart_path

from .conftest import APP_ID, ONE_SHOT, SESSION_ID, make_product


async def test_adding_same_product_twice_merges_quantities(cart):
    product = make_product("P1", price=1000)

    assert await cart.add_item(product, 2)
    assert await cart.add_item(product, 5)

    assert cart.line_count == 1
    line = cart.cart.get("P1")
    assert line.quantity == 7
    assert line.line_total == 7000


async def test_add_item_denormalizes_product_fields(cart, memory_store):
    product = make_product("P2", price=2500, discount_price=1999, image_url="https://img/p2.png")

    await cart.add_item(product)

    doc = await memory_store.get(f"{cart_path(APP_ID, SESSION_ID)}/P2")
    assert doc.data == {
        "product_id": "P2",
        "name": "Product P2",
        "price": 1999,
        "image_url": "https://img/p2.png",
        "quantity": 1,
    }


async def test_add_item_rejects_non_positive_quantity(cart, memory_store, notices):
    assert not await cart.add_item(make_product(), 0)

    assert memory_store.remote_calls() == []
    assert notices.last.kind == NoticeKind.WARNING


@pytest.mark.parametrize("quantity", [0, -1, -10])
async def test_set_quantity_at_or_below_zero_removes_line(cart, quantity):
    await cart.add_item(make_product("P1"), 3)

    assert await cart.set_quantity("P1", quantity)

    assert cart.cart.get("P1") is None
    assert cart.line_count == 0


async def test_set_quantity_overwrites(cart):
    await cart.add_item(make_product("P1"), 3)

    assert await cart.set_quantity("P1", 1)

    assert cart.cart.get("P1").quantity == 1


async def test_remove_item_is_idempotent(cart):
    await cart.add_item(make_product("P1"))

    assert await cart.remove_item("P1")
    assert await cart.remove_item("P1")
    assert cart.line_count == 0


async def test_clear_empty_cart_succeeds(cart):
    assert await cart.clear() == ClearOutcome.CLEARED
    assert cart.line_count == 0


async def test_clear_deletes_every_line(cart, store):
    for product_id in ("P1", "P2", "P3"):
        await cart.add_item(make_product(product_id))

    assert await cart.clear() == ClearOutcome.CLEARED

    assert cart.line_count == 0
    assert await store.list_collection(cart_path(APP_ID, SESSION_ID)) == []


async def test_cancelled_clear_leaves_cart_untouched(cart, memory_store):
    await cart.add_item(make_product("P1"), 2)
    before = cart.cart.model_dump()
    calls_before = len(memory_store.remote_calls())

    outcome = await cart.clear(confirm=answer(False))

    assert outcome == ClearOutcome.CANCELLED
    assert cart.cart.model_dump() == before
    assert len(memory_store.remote_calls()) == calls_before


async def test_clear_reports_failed_delete(cart, memory_store, notices):
    await cart.add_item(make_product("P1"))
    await cart.add_item(make_product("P2"))
    memory_store.fail("delete")

    assert await cart.clear() == ClearOutcome.FAILED
    assert notices.last.kind == NoticeKind.ERROR
    assert cart.line_count == 1


async def test_remote_failure_is_reported_not_raised(cart, memory_store, notices):
    memory_store.fail("get")

    assert not await cart.add_item(make_product("P1"))

    assert cart.line_count == 0
    assert notices.last.kind == NoticeKind.ERROR


async def test_mutations_without_session_raise_not_ready(store, notices, memory_store):
    adapter = CartStoreAdapter(store, APP_ID, notices, answer(True), ONE_SHOT)

    with pytest.raises(NotReady):
        await adapter.add_item(make_product())
    with pytest.raises(NotReady):
        await adapter.set_quantity("P1", 2)
    with pytest.raises(NotReady):
        await adapter.clear()
    assert memory_store.remote_calls() == []


async def test_concurrent_adds_from_one_client_do_not_lose_updates(cart):
    import asyncio

    product = make_product("P1")
    await asyncio.gather(*(cart.add_item(product, 1) for _ in range(5)))

    assert cart.cart.get("P1").quantity == 5


async def test_attach_to_new_session_switches_cart(cart, memory_store):
    await cart.add_item(make_product("P1"))

    cart.attach("session-2")

    assert cart.session_id == "session-2"
    assert cart.line_count == 0
    assert memory_store.listener_count(cart_path(APP_ID, SESSION_ID)) == 0
    assert memory_store.listener_count(cart_path(APP_ID, "session-2")) == 1
