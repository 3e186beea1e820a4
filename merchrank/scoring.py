"""商品ごとの派生レコード (在庫・価格・スコア) を計算するモジュール.

スコアリング方式:
  - WEIGHTED: 売上・販売数を最大値で 0〜1 に正規化し、在庫 (0/1) と重み付き合成
  - HEURISTIC: 在庫 50 点 + 売上 x 0.01 + 販売数 x 100 (正規化なし)
  - NONE: スコアを計算しない
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from merchrank.accrual import accrual_for, product_key
from merchrank.config import (
    HEURISTIC_REVENUE_FACTOR,
    HEURISTIC_STOCK_BONUS,
    HEURISTIC_UNITS_FACTOR,
    WEIGHT_REVENUE,
    WEIGHT_STOCK,
    WEIGHT_UNITS,
)
from merchrank.models import (
    DerivedRecord,
    JoinKey,
    PriceSummary,
    ProductRecord,
    SalesAccrual,
    ScoreWeights,
    ScoringPolicy,
    Variant,
)

logger = logging.getLogger(__name__)

TAG_SEPARATOR = ", "


def parse_tags(raw: str | None) -> list[str]:
    """タグ文字列を分割する. 空文字と重複は除外し、出現順を保つ."""
    if not raw:
        return []
    tags: list[str] = []
    for part in raw.split(TAG_SEPARATOR):
        tag = part.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def is_in_stock(variants: list[Variant]) -> bool:
    """いずれかのバリエーションが購入可能なら True."""
    return any(v.is_available for v in variants)


def normalize(value: float | Decimal, maximum: float | Decimal) -> float:
    """value / maximum. maximum が 0 以下なら 0."""
    if maximum <= 0:
        return 0.0
    return float(value / maximum)


def summarize_prices(variants: list[Variant]) -> PriceSummary | None:
    """バリエーション横断の通常価格・販売価格レンジを計算する.

    バリエーションがなければ None。
    """
    if not variants:
        return None

    regular_prices: list[Decimal] = []
    sale_prices: list[Decimal] = []
    percent_offs: list[int] = []
    for v in variants:
        regular = v.compare_at_price if v.compare_at_price is not None else v.price
        sale = v.price
        regular_prices.append(regular)
        sale_prices.append(sale)
        if regular > sale and regular > 0:
            pct = ((regular - sale) / regular * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            percent_offs.append(int(pct))
        else:
            percent_offs.append(0)

    return PriceSummary(
        min_regular=min(regular_prices),
        max_regular=max(regular_prices),
        min_sale=min(sale_prices),
        max_sale=max(sale_prices),
        max_percent_off=max(percent_offs),
        on_sale=any(r > s for r, s in zip(regular_prices, sale_prices)),
    )


def featured_image(product: ProductRecord) -> dict | None:
    """position=1 の画像 (なければ先頭画像) を返す."""
    if not product.images:
        return None
    image = next((img for img in product.images if img.get("position") == 1), product.images[0])
    return {
        "src": image.get("src"),
        "alt": image.get("alt") or product.title,
        "width": image.get("width"),
        "height": image.get("height"),
    }


def default_weights() -> ScoreWeights:
    return ScoreWeights(WEIGHT_REVENUE, WEIGHT_UNITS, WEIGHT_STOCK)


def weighted_score(
    revenue_score: float, unit_score: float, in_stock: bool, weights: ScoreWeights
) -> float:
    stock_score = 1.0 if in_stock else 0.0
    return (
        revenue_score * weights.revenue
        + unit_score * weights.units
        + stock_score * weights.stock
    )


def heuristic_score(revenue: Decimal, units_sold: int, in_stock: bool) -> float:
    bonus = HEURISTIC_STOCK_BONUS if in_stock else 0.0
    return bonus + float(revenue) * HEURISTIC_REVENUE_FACTOR + units_sold * HEURISTIC_UNITS_FACTOR


def derive_records(
    products: list[ProductRecord],
    accruals: Mapping[int | str, SalesAccrual],
    join_key: JoinKey,
    scoring: ScoringPolicy = ScoringPolicy.NONE,
    weights: ScoreWeights | None = None,
    ratings: Mapping[str, tuple[float, int]] | None = None,
) -> list[DerivedRecord]:
    """公開中の商品 1 件につき 1 レコードを返す. 順序は入力順."""
    visible = [p for p in products if p.is_visible]
    ratings = ratings or {}

    records: list[DerivedRecord] = []
    for p in visible:
        key = product_key(p, join_key)
        sale = accrual_for(accruals, key) if key is not None else SalesAccrual()
        rating, review_count = ratings.get(p.handle, (0.0, 0))
        records.append(DerivedRecord(
            key=key if key is not None else p.handle,
            product_id=p.id,
            handle=p.handle,
            title=p.title,
            vendor=p.vendor,
            product_type=p.product_type,
            tags=parse_tags(p.tags),
            created_at=p.created_at,
            published_at=p.published_at,
            in_stock=is_in_stock(p.variants),
            units_sold=sale.units_sold,
            revenue=sale.revenue,
            pricing=summarize_prices(p.variants),
            featured_image=featured_image(p),
            rating=rating,
            review_count=review_count,
        ))

    if scoring is ScoringPolicy.WEIGHTED:
        _apply_weighted(records, weights or default_weights())
    elif scoring is ScoringPolicy.HEURISTIC:
        for r in records:
            r.score = heuristic_score(r.revenue, r.units_sold, r.in_stock)

    logger.info("派生レコード: %d 件 (scoring=%s)", len(records), scoring.value)
    return records


def _apply_weighted(records: list[DerivedRecord], weights: ScoreWeights) -> None:
    max_revenue = max((r.revenue for r in records), default=Decimal("0"))
    max_units = max((r.units_sold for r in records), default=0)
    for r in records:
        r.revenue_score = normalize(r.revenue, max_revenue)
        r.unit_score = normalize(r.units_sold, max_units)
        r.score = weighted_score(r.revenue_score, r.unit_score, r.in_stock, weights)
