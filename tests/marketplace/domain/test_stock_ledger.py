"""Tests for the stock ledger over the in-memory product store."""

import threading

import pytest

from marketplace.exceptions import InsufficientStockError
from marketplace.stock.ledger import StockLedger
from marketplace.stock.memory_adapter import InMemoryProductStore


@pytest.fixture()
def store():
    store = InMemoryProductStore()
    store.add_product("prod-vase", "Vase", price=125.0, stock=10)
    store.add_product("prod-rug", "Rug", price=600.0, stock=2)
    store.add_product("prod-lamp", "Lamp", price=50.0, stock=1)
    return store


@pytest.fixture()
def ledger(store):
    return StockLedger(store)


class TestReserve:
    def test_decrements_every_line(self, store, ledger):
        ledger.reserve("ORD-1", [("prod-vase", 3), ("prod-rug", 2)])
        assert store.get("prod-vase").stock == 7
        assert store.get("prod-rug").stock == 0

    def test_bumps_sales_count(self, store, ledger):
        ledger.reserve("ORD-1", [("prod-vase", 3)])
        assert store.get("prod-vase").sales_count == 3

    def test_insufficient_line_rolls_back_earlier_lines(self, store, ledger):
        with pytest.raises(InsufficientStockError) as exc:
            ledger.reserve("ORD-1", [("prod-vase", 3), ("prod-rug", 5)])

        assert "prod-rug" in exc.value.messages["items"][0]
        assert store.get("prod-vase").stock == 10
        assert store.get("prod-rug").stock == 2
        assert store.get("prod-vase").sales_count == 0

    def test_failed_reservation_can_be_retried(self, store, ledger):
        with pytest.raises(InsufficientStockError):
            ledger.reserve("ORD-1", [("prod-rug", 5)])
        store.add_product("prod-rug", "Rug", price=600.0, stock=5)
        ledger.reserve("ORD-1", [("prod-rug", 5)])
        assert store.get("prod-rug").stock == 0

    def test_unknown_product_is_insufficient(self, ledger):
        with pytest.raises(InsufficientStockError):
            ledger.reserve("ORD-1", [("prod-missing", 1)])


class TestRelease:
    def test_restores_stock_and_sales_count(self, store, ledger):
        ledger.reserve("ORD-1", [("prod-vase", 3), ("prod-lamp", 1)])
        ledger.release("ORD-1", [("prod-vase", 3), ("prod-lamp", 1)])
        assert store.get("prod-vase").stock == 10
        assert store.get("prod-lamp").stock == 1
        assert store.get("prod-vase").sales_count == 0


class TestConcurrentReservations:
    def test_last_unit_goes_to_exactly_one_buyer(self, store, ledger):
        outcomes = []
        barrier = threading.Barrier(2)

        def attempt(order_number):
            barrier.wait()
            try:
                ledger.reserve(order_number, [("prod-lamp", 1)])
                outcomes.append("reserved")
            except InsufficientStockError:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=attempt, args=(f"ORD-{n}",)) for n in (1, 2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["insufficient", "reserved"]
        assert store.get("prod-lamp").stock == 0

    def test_many_buyers_never_oversell(self, store, ledger):
        successes = []

        def attempt(order_number):
            try:
                ledger.reserve(order_number, [("prod-vase", 1)])
                successes.append(order_number)
            except InsufficientStockError:
                pass

        threads = [threading.Thread(target=attempt, args=(f"ORD-{n}",)) for n in range(25)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(successes) == 10
        assert store.get("prod-vase").stock == 0
