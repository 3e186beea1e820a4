"""scoring モジュールのユニットテスト."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from merchrank.models import (
    JoinKey,
    ProductRecord,
    SalesAccrual,
    ScoreWeights,
    ScoringPolicy,
    Variant,
)
from merchrank.scoring import (
    derive_records,
    featured_image,
    heuristic_score,
    is_in_stock,
    normalize,
    parse_tags,
    summarize_prices,
    weighted_score,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_products() -> list[ProductRecord]:
    raw = json.loads((FIXTURES_DIR / "products.json").read_text(encoding="utf-8"))
    return [ProductRecord.from_api(p) for p in raw]


def _variant(**kwargs) -> Variant:
    kwargs.setdefault("price", Decimal("10.00"))
    kwargs.setdefault("inventory_management", "shopify")
    return Variant(**kwargs)


class TestParseTags:
    """parse_tags のテスト."""

    def test_split_and_trim(self):
        assert parse_tags("summer, new-arrival,  sale ") == ["summer", "new-arrival", "sale"]

    def test_drop_empty_and_duplicates(self):
        assert parse_tags("a, , b, a") == ["a", "b"]

    def test_empty(self):
        assert parse_tags("") == []
        assert parse_tags(None) == []


class TestIsInStock:
    """is_in_stock のテスト."""

    def test_positive_quantity(self):
        assert is_in_stock([_variant(inventory_quantity=0), _variant(inventory_quantity=2)])

    def test_untracked_inventory(self):
        assert is_in_stock([_variant(inventory_quantity=0, inventory_management=None)])

    def test_continue_policy(self):
        assert is_in_stock([_variant(inventory_quantity=-3, inventory_policy="continue")])

    def test_all_sold_out(self):
        assert not is_in_stock([_variant(inventory_quantity=0, inventory_policy="deny")])

    def test_no_variants(self):
        assert not is_in_stock([])


class TestNormalize:
    """normalize のテスト."""

    def test_zero_max(self):
        assert normalize(5, 0) == 0
        assert normalize(Decimal("5"), Decimal("0")) == 0

    def test_in_unit_range(self):
        for value in (0, 1, 7, 10):
            assert 0 <= normalize(value, 10) <= 1

    def test_decimal(self):
        assert normalize(Decimal("25"), Decimal("100")) == pytest.approx(0.25)


class TestSummarizePrices:
    """summarize_prices のテスト."""

    def test_sale_range(self):
        summary = summarize_prices([
            _variant(price=Decimal("40.00"), compare_at_price=Decimal("50.00")),
            _variant(price=Decimal("45.00")),
        ])

        assert summary.min_regular == Decimal("45.00")
        assert summary.max_regular == Decimal("50.00")
        assert summary.min_sale == Decimal("40.00")
        assert summary.max_sale == Decimal("45.00")
        assert summary.max_percent_off == 20
        assert summary.on_sale is True
        assert summary.price_range == "$40.00 - $45.00"

    def test_single_price(self):
        summary = summarize_prices([_variant(price=Decimal("19.5"))])

        assert summary.price_range == "$19.50"
        assert summary.on_sale is False
        assert summary.max_percent_off == 0

    def test_percent_rounds_half_up(self):
        # (8 - 7.96) / 8 = 0.5%
        summary = summarize_prices([_variant(price=Decimal("7.96"), compare_at_price=Decimal("8.00"))])

        assert summary.max_percent_off == 1

    def test_small_discount_is_still_sale(self):
        # 0.4% 引きは 0% に丸められるがセール扱い
        summary = summarize_prices([_variant(price=Decimal("99.60"), compare_at_price=Decimal("100.00"))])

        assert summary.max_percent_off == 0
        assert summary.on_sale is True

    def test_compare_at_below_price_is_not_sale(self):
        summary = summarize_prices([_variant(price=Decimal("10"), compare_at_price=Decimal("8"))])

        assert summary.on_sale is False
        assert summary.max_percent_off == 0

    def test_no_variants(self):
        assert summarize_prices([]) is None


class TestFeaturedImage:
    """featured_image のテスト."""

    def test_position_one_preferred(self):
        product = _load_products()[0]

        image = featured_image(product)

        assert image["src"] == "https://cdn.example.com/shirt-1.jpg"
        assert image["alt"] == "Front"

    def test_no_images(self):
        assert featured_image(ProductRecord(id=1, handle="x")) is None


class TestScores:
    """スコア計算のテスト."""

    def test_weighted(self):
        weights = ScoreWeights(revenue=0.5, units=0.3, stock=0.2)

        assert weighted_score(1.0, 0.5, True, weights) == pytest.approx(0.85)
        assert weighted_score(1.0, 0.5, False, weights) == pytest.approx(0.65)

    def test_weights_need_not_sum_to_one(self):
        weights = ScoreWeights(revenue=2.0, units=2.0, stock=2.0)

        assert weighted_score(1.0, 1.0, True, weights) == pytest.approx(6.0)

    def test_heuristic(self):
        assert heuristic_score(Decimal("80.00"), 2, True) == pytest.approx(250.8)
        assert heuristic_score(Decimal("0"), 0, False) == 0


class TestDeriveRecords:
    """derive_records のテスト."""

    def test_one_record_per_visible_product(self):
        records = derive_records(_load_products(), {}, JoinKey.HANDLE)

        assert [r.handle for r in records] == ["linen-shirt", "canvas-tote", "gift-card"]
        assert all(r.units_sold == 0 and r.revenue == 0 for r in records)
        assert all(r.score is None for r in records)

    def test_empty_published_at_is_unpublished(self):
        blank = ProductRecord.from_api({"id": 105, "handle": "blank-date", "published_at": ""})

        records = derive_records(_load_products() + [blank], {}, JoinKey.HANDLE)

        assert blank.published_at is None
        assert blank.is_visible is False
        assert "blank-date" not in [r.handle for r in records]

    def test_derived_fields(self):
        records = derive_records(_load_products(), {}, JoinKey.HANDLE)
        shirt, tote, gift = records

        assert shirt.in_stock is True
        assert tote.in_stock is False
        assert gift.in_stock is True
        assert shirt.tags == ["summer", "new-arrival"]
        assert tote.tags == ["summer", "accessories"]
        assert gift.tags == []

    def test_accrual_by_id(self):
        accruals = {101: SalesAccrual(units_sold=2, revenue=Decimal("80.00"))}

        records = derive_records(_load_products(), accruals, JoinKey.ID)

        assert records[0].key == 101
        assert records[0].units_sold == 2
        assert records[1].units_sold == 0

    def test_weighted_normalization(self):
        accruals = {
            "linen-shirt": SalesAccrual(units_sold=2, revenue=Decimal("80.00")),
            "canvas-tote": SalesAccrual(units_sold=4, revenue=Decimal("79.97")),
        }
        weights = ScoreWeights(revenue=0.5, units=0.3, stock=0.2)

        shirt, tote, gift = derive_records(
            _load_products(), accruals, JoinKey.HANDLE, ScoringPolicy.WEIGHTED, weights
        )

        assert shirt.revenue_score == pytest.approx(1.0)
        assert shirt.unit_score == pytest.approx(0.5)
        assert shirt.score == pytest.approx(0.85)
        assert tote.score == pytest.approx(0.7998125)
        assert gift.score == pytest.approx(0.2)

    def test_weighted_all_zero_sales(self):
        weights = ScoreWeights(revenue=0.5, units=0.3, stock=0.2)

        records = derive_records(_load_products(), {}, JoinKey.HANDLE, ScoringPolicy.WEIGHTED, weights)

        assert [r.revenue_score for r in records] == [0.0, 0.0, 0.0]
        assert [r.score for r in records] == pytest.approx([0.2, 0.0, 0.2])

    def test_ratings_joined_by_handle(self):
        records = derive_records(
            _load_products(), {}, JoinKey.HANDLE, ratings={"canvas-tote": (4.5, 2)}
        )

        assert (records[1].rating, records[1].review_count) == (4.5, 2)
        assert (records[0].rating, records[0].review_count) == (0.0, 0)
