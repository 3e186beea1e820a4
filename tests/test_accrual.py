"""accrual モジュールのユニットテスト."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from merchrank.accrual import ProductIndex, accrual_for, accrue_sales
from merchrank.models import JoinKey, LineItem, OrderRecord, ProductRecord, SalesAccrual

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_fixture(name: str) -> list[dict]:
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))


def _products() -> list[ProductRecord]:
    products = [ProductRecord.from_api(p) for p in _load_fixture("products.json")]
    return [p for p in products if p.is_visible]


def _orders() -> list[OrderRecord]:
    return [OrderRecord.from_api(o) for o in _load_fixture("orders.json")]


class TestProductIndex:
    """ProductIndex のテスト."""

    def test_resolve_by_id_to_handle(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        item = LineItem(product_id=101, product_handle=None, quantity=1, price=Decimal("1"))

        assert index.resolve(item) == "linen-shirt"

    def test_resolve_by_id_to_id(self):
        index = ProductIndex.build(_products(), JoinKey.ID)
        item = LineItem(product_id=102, product_handle=None, quantity=1, price=Decimal("1"))

        assert index.resolve(item) == 102

    def test_resolve_by_handle_when_id_missing(self):
        index = ProductIndex.build(_products(), JoinKey.ID)
        item = LineItem(product_id=None, product_handle="canvas-tote", quantity=1, price=Decimal("1"))

        assert index.resolve(item) == 102

    def test_unknown_product(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        item = LineItem(product_id=999, product_handle="deleted", quantity=1, price=Decimal("1"))

        assert index.resolve(item) is None

    def test_tables_are_read_only(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)

        with pytest.raises(TypeError):
            index.by_id[555] = "x"  # type: ignore[index]


class TestAccrueSales:
    """accrue_sales のテスト."""

    def test_fixture_totals(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        accruals = accrue_sales(_orders(), index)

        assert accruals["linen-shirt"].units_sold == 2
        assert accruals["linen-shirt"].revenue == Decimal("80.00")
        assert accruals["canvas-tote"].units_sold == 4
        assert accruals["canvas-tote"].revenue == Decimal("79.97")
        assert "gift-card" not in accruals

    def test_refunded_order_contributes_nothing(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        order = OrderRecord.from_api({
            "financial_status": "refunded",
            "line_items": [{"product_id": 101, "quantity": 1000, "price": "10.00"}],
        })

        assert accrue_sales([order], index) == {}

    def test_voided_status_case_insensitive(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        order = OrderRecord.from_api({
            "financial_status": "VOIDED",
            "line_items": [{"product_id": 101, "quantity": 1, "price": "10.00"}],
        })

        assert accrue_sales([order], index) == {}

    def test_unresolvable_item_skipped_not_order(self):
        index = ProductIndex.build(_products(), JoinKey.ID)
        order = OrderRecord.from_api({
            "financial_status": "paid",
            "line_items": [
                {"product_id": 999, "quantity": 3, "price": "10.00"},
                {"product_id": 103, "quantity": 1, "price": "25.00"},
            ],
        })

        accruals = accrue_sales([order], index)

        assert list(accruals) == [103]
        assert accruals[103].revenue == Decimal("25.00")

    def test_exact_decimal_revenue(self):
        index = ProductIndex.build(_products(), JoinKey.HANDLE)
        orders = [
            OrderRecord.from_api({
                "financial_status": "paid",
                "line_items": [{"product_id": 101, "quantity": 1, "price": "0.10"}],
            })
            for _ in range(1000)
        ]

        accruals = accrue_sales(orders, index)

        assert accruals["linen-shirt"].revenue == Decimal("100.00")
        assert accruals["linen-shirt"].units_sold == 1000


class TestAccrualFor:
    """accrual_for のテスト."""

    def test_missing_key_is_zero(self):
        accrual = accrual_for({}, "nothing")

        assert accrual == SalesAccrual(units_sold=0, revenue=Decimal("0"))

    def test_existing_key(self):
        existing = SalesAccrual(units_sold=3, revenue=Decimal("30"))

        assert accrual_for({"a": existing}, "a") is existing
