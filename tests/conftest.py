import pytest

from storefront_server.cart import CartStoreAdapter
from storefront_server.catalog import CatalogCache
from storefront_server.models import Product
from storefront_server.notices import NoticeBoard, answer
from storefront_server.policy import GuardedStore, RetryPolicy
from storefront_server.store import MemoryDocumentStore, products_path

APP_ID = "test-app"
SESSION_ID = "session-1"
ONE_SHOT = RetryPolicy(attempts=1, backoff_initial=0.01)


class FlakyStore(MemoryDocumentStore):
    """Memory store whose operations can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    def fail(self, operation: str, times: int = 1) -> None:
        self.failures[operation] = times

    def _maybe_fail(self, operation: str, path: str) -> None:
        self.calls.append((operation, path))
        if self.failures.get(operation, 0) > 0:
            self.failures[operation] -= 1
            raise ConnectionError(f"{operation} rejected")

    async def get(self, path):
        self._maybe_fail("get", path)
        return await super().get(path)

    async def set(self, path, fields):
        self._maybe_fail("set", path)
        await super().set(path, fields)

    async def update(self, path, fields):
        self._maybe_fail("update", path)
        await super().update(path, fields)

    async def delete(self, path):
        self._maybe_fail("delete", path)
        await super().delete(path)

    async def list_collection(self, path):
        self._maybe_fail("list", path)
        return await super().list_collection(path)

    def remote_calls(self) -> list[tuple[str, str]]:
        return list(self.calls)


def make_product(product_id: str = "P1", price: int = 1000, **extra) -> Product:
    fields = {"name": f"Product {product_id}", "category": "apparel", **extra}
    return Product(id=product_id, price=price, **fields)


async def seed_product(store: MemoryDocumentStore, product: Product) -> None:
    data = product.model_dump(exclude={"id"})
    await store.set(f"{products_path(APP_ID)}/{product.id}", data)


@pytest.fixture
def memory_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def store(memory_store: FlakyStore) -> GuardedStore:
    return GuardedStore(memory_store, timeout=1.0, retry=ONE_SHOT)


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
async def cart(store: GuardedStore, notices: NoticeBoard) -> CartStoreAdapter:
    adapter = CartStoreAdapter(store, APP_ID, notices, answer(True), ONE_SHOT)
    adapter.attach(SESSION_ID)
    yield adapter
    adapter.detach()


@pytest.fixture
async def catalog(store: GuardedStore, notices: NoticeBoard) -> CatalogCache:
    cache = CatalogCache(store, notices, ONE_SHOT)
    cache.activate(products_path(APP_ID))
    yield cache
    cache.teardown()
