"""注文明細を商品キーに突き合わせて販売実績を集計するモジュール."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from merchrank.models import JoinKey, LineItem, OrderRecord, ProductRecord, SalesAccrual

logger = logging.getLogger(__name__)


def product_key(product: ProductRecord, join_key: JoinKey) -> int | str | None:
    """商品の集計キーを返す."""
    if join_key is JoinKey.ID:
        return product.id
    return product.handle or None


@dataclass(frozen=True)
class ProductIndex:
    """商品 id / handle → 集計キーの参照テーブル. 構築後は読み取り専用."""

    join_key: JoinKey
    by_id: Mapping[int, int | str]
    by_handle: Mapping[str, int | str]

    @classmethod
    def build(cls, products: list[ProductRecord], join_key: JoinKey) -> ProductIndex:
        by_id: dict[int, int | str] = {}
        by_handle: dict[str, int | str] = {}
        for p in products:
            key = product_key(p, join_key)
            if key is None:
                continue
            if p.id is not None:
                by_id[p.id] = key
            if p.handle:
                by_handle[p.handle] = key
        return cls(join_key, MappingProxyType(by_id), MappingProxyType(by_handle))

    def resolve(self, item: LineItem) -> int | str | None:
        """明細が参照する商品の集計キーを返す. 見つからなければ None.

        API によって明細には product_id か handle のどちらかしかないため、
        id を優先し、なければ handle で引く。
        """
        if item.product_id is not None and item.product_id in self.by_id:
            return self.by_id[item.product_id]
        if item.product_handle and item.product_handle in self.by_handle:
            return self.by_handle[item.product_handle]
        return None


def accrual_for(accruals: Mapping[int | str, SalesAccrual], key: int | str) -> SalesAccrual:
    """キーの販売実績を返す. 未集計なら 0 の実績."""
    return accruals.get(key) or SalesAccrual()


def accrue_sales(orders: list[OrderRecord], index: ProductIndex) -> dict[int | str, SalesAccrual]:
    """注文一覧から商品キー別の販売実績を集計する.

    - voided / refunded の注文は丸ごと除外
    - 商品が見つからない明細 (削除済み商品など) はその明細のみスキップ
    """
    accruals: dict[int | str, SalesAccrual] = {}
    excluded_orders = 0
    skipped_items = 0

    for order in orders:
        if order.is_excluded:
            excluded_orders += 1
            continue

        for item in order.line_items:
            key = index.resolve(item)
            if key is None:
                skipped_items += 1
                continue
            accruals.setdefault(key, SalesAccrual()).add(item.quantity, item.price)

    logger.info(
        "販売集計: 注文 %d 件 (除外 %d 件), 対象商品 %d 件, 突合不可の明細 %d 件",
        len(orders), excluded_orders, len(accruals), skipped_items,
    )
    return accruals
