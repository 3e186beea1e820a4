"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from merchrank.config import (
    EXCLUDED_FINANCIAL_STATUSES,
    REVENUE_QUANTUM,
    SCORE_DECIMALS,
)


class JoinKey(Enum):
    """集計テーブルのキー種別. 1 回の実行で固定."""

    ID = "id"
    HANDLE = "handle"


class ScoringPolicy(Enum):
    NONE = "none"
    WEIGHTED = "weighted"  # 正規化 + 重み付き合成
    HEURISTIC = "heuristic"  # 正規化なしの線形合成


class SortPolicy(Enum):
    SCORE = "score"
    REVENUE_UNITS_STOCK = "revenue_units_stock"
    STOCK_RECENCY = "stock_recency"
    UNITS_SOLD = "units_sold"


def parse_decimal(value: Any) -> Decimal | None:
    """API の金額文字列を Decimal に変換する. 変換できなければ None."""
    if value is None or value == "":
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO 8601 文字列を datetime に変換する."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Variant:
    """商品バリエーション (サイズ・色など)."""

    price: Decimal
    compare_at_price: Decimal | None = None
    inventory_quantity: int = 0
    inventory_management: str | None = None  # None = 在庫管理なし
    inventory_policy: str | None = None  # "continue" = 在庫切れでも販売可

    @classmethod
    def from_api(cls, data: dict) -> Variant:
        return cls(
            price=parse_decimal(data.get("price")) or Decimal("0"),
            compare_at_price=parse_decimal(data.get("compare_at_price")),
            inventory_quantity=_to_int(data.get("inventory_quantity")) or 0,
            inventory_management=data.get("inventory_management") or None,
            inventory_policy=data.get("inventory_policy"),
        )

    @property
    def is_available(self) -> bool:
        return (
            self.inventory_management is None
            or self.inventory_quantity > 0
            or self.inventory_policy == "continue"
        )


@dataclass
class ProductRecord:
    """商品マスタの 1 商品を表す."""

    id: int | None
    handle: str
    title: str = ""
    vendor: str = ""
    product_type: str = ""
    tags: str = ""  # カンマ区切りの生文字列
    created_at: str | None = None  # ISO 8601
    published_at: str | None = None  # None = 非公開
    variants: list[Variant] = field(default_factory=list)
    images: list[dict] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> ProductRecord:
        return cls(
            id=_to_int(data.get("id")),
            handle=data.get("handle") or "",
            title=data.get("title") or "",
            vendor=data.get("vendor") or "",
            product_type=data.get("product_type") or "",
            tags=data.get("tags") or "",
            created_at=data.get("created_at"),
            published_at=data.get("published_at") or None,
            variants=[Variant.from_api(v) for v in data.get("variants") or []],
            images=list(data.get("images") or []),
        )

    @property
    def is_visible(self) -> bool:
        return bool(self.published_at)


@dataclass
class LineItem:
    """注文明細. API によって product_id か handle のどちらかで商品を参照する."""

    product_id: int | None
    product_handle: str | None
    quantity: int
    price: Decimal  # 単価

    @classmethod
    def from_api(cls, data: dict) -> LineItem:
        quantity = _to_int(data.get("quantity")) or 0
        return cls(
            product_id=_to_int(data.get("product_id")),
            product_handle=data.get("product_handle") or data.get("handle"),
            quantity=max(quantity, 0),
            price=parse_decimal(data.get("price")) or Decimal("0"),
        )


@dataclass
class OrderRecord:
    financial_status: str | None
    line_items: list[LineItem] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> OrderRecord:
        return cls(
            financial_status=data.get("financial_status"),
            line_items=[LineItem.from_api(li) for li in data.get("line_items") or []],
        )

    @property
    def is_excluded(self) -> bool:
        return (self.financial_status or "").lower() in EXCLUDED_FINANCIAL_STATUSES


@dataclass
class SalesAccrual:
    """商品キー単位の販売実績. 丸めは出力時のみ行う."""

    units_sold: int = 0
    revenue: Decimal = Decimal("0")

    def add(self, quantity: int, unit_price: Decimal) -> None:
        self.units_sold += quantity
        self.revenue += unit_price * quantity


@dataclass
class ScoreWeights:
    revenue: float
    units: float
    stock: float


@dataclass
class PriceSummary:
    """バリエーション横断の価格レンジ."""

    min_regular: Decimal
    max_regular: Decimal
    min_sale: Decimal
    max_sale: Decimal
    max_percent_off: int
    on_sale: bool

    @property
    def price_range(self) -> str:
        if self.min_sale == self.max_sale:
            return f"${self.min_sale:.2f}"
        return f"${self.min_sale:.2f} - ${self.max_sale:.2f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_regular_price": float(self.min_regular),
            "max_regular_price": float(self.max_regular),
            "min_sale_price": float(self.min_sale),
            "max_sale_price": float(self.max_sale),
            "percent_off": self.max_percent_off,
        }


@dataclass
class DerivedRecord:
    """商品 + 販売実績 + 派生スコア. rank はソート後にのみ設定される."""

    key: int | str  # 集計キー (id または handle)
    product_id: int | None
    handle: str
    title: str
    vendor: str
    product_type: str
    tags: list[str]
    created_at: str | None
    published_at: str | None
    in_stock: bool
    units_sold: int = 0
    revenue: Decimal = Decimal("0")
    revenue_score: float | None = None
    unit_score: float | None = None
    score: float | None = None  # 丸め前の値
    pricing: PriceSummary | None = None
    featured_image: dict | None = None
    rating: float = 0.0
    review_count: int = 0
    rank: int | None = None

    def to_dict(self, fields: tuple[str, ...] | None = None) -> dict[str, Any]:
        """出力用の dict を返す. 金額は小数 2 桁、スコアは小数 4 桁に丸める."""
        data: dict[str, Any] = {
            "id": self.product_id,
            "handle": self.handle,
            "title": self.title,
            "vendor": self.vendor,
            "product_type": self.product_type,
            "tags": list(self.tags),
            "created_at": self.created_at,
            "published_at": self.published_at,
            "in_stock": self.in_stock,
            "units_sold": self.units_sold,
            "revenue": float(self.revenue.quantize(REVENUE_QUANTUM, rounding=ROUND_HALF_UP)),
            "revenue_score": _round_score(self.revenue_score),
            "unit_score": _round_score(self.unit_score),
            "score": _round_score(self.score),
            "price": self.pricing.price_range if self.pricing else None,
            "on_sale": self.pricing.on_sale if self.pricing else False,
            "price_range": self.pricing.to_dict() if self.pricing else None,
            "featured_image": self.featured_image,
            "rating": self.rating,
            "review_count": self.review_count,
            "rank": self.rank,
        }
        if fields is None:
            return data
        return {name: data[name] for name in fields}


def _round_score(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, SCORE_DECIMALS)


@dataclass
class RankingJob:
    """出力 1 件分のランキング定義."""

    name: str
    scoring: ScoringPolicy
    sort: SortPolicy
    fields: tuple[str, ...]
    output_name: str  # ファイル名 (タグ別の場合はディレクトリ名)
    partition_by_tag: bool = False
    top_n: int | None = None
    needs_orders: bool = True
