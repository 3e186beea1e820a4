"""ソート・タグ別パーティション・順位付けモジュール.

Python の sorted は安定ソートのため、同値の要素は入力順を保つ。
順位は最終的な並び (切り詰め後) に対して 1 から連番で振る。
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from merchrank.models import DerivedRecord, SortPolicy, parse_timestamp

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def sort_by_score(records: list[DerivedRecord]) -> list[DerivedRecord]:
    """スコア降順. 丸め前の値で比較する."""
    return sorted(records, key=lambda r: r.score if r.score is not None else float("-inf"), reverse=True)


def sort_by_revenue_units_stock(records: list[DerivedRecord]) -> list[DerivedRecord]:
    """売上降順 → 販売数降順 → 在庫ありを先."""
    return sorted(records, key=lambda r: (-r.revenue, -r.units_sold, not r.in_stock))


def sort_by_stock_recency(records: list[DerivedRecord]) -> list[DerivedRecord]:
    """在庫切れを末尾にまとめ、各ブロック内は作成日時の新しい順."""
    by_recency = sorted(records, key=_created_key, reverse=True)
    return sorted(by_recency, key=lambda r: not r.in_stock)


def sort_by_units_sold(records: list[DerivedRecord]) -> list[DerivedRecord]:
    """販売数降順. 同数は入力順のまま."""
    return sorted(records, key=lambda r: r.units_sold, reverse=True)


def _created_key(record: DerivedRecord) -> datetime:
    created = parse_timestamp(record.created_at)
    if created is None:
        return _OLDEST
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


_SORTERS: dict[SortPolicy, Callable[[list[DerivedRecord]], list[DerivedRecord]]] = {
    SortPolicy.SCORE: sort_by_score,
    SortPolicy.REVENUE_UNITS_STOCK: sort_by_revenue_units_stock,
    SortPolicy.STOCK_RECENCY: sort_by_stock_recency,
    SortPolicy.UNITS_SOLD: sort_by_units_sold,
}


def sort_records(records: list[DerivedRecord], policy: SortPolicy) -> list[DerivedRecord]:
    return _SORTERS[policy](records)


def assign_ranks(records: list[DerivedRecord]) -> list[DerivedRecord]:
    """並び順どおりに 1 始まりの順位を振ったコピーを返す."""
    return [replace(r, rank=i) for i, r in enumerate(records, start=1)]


def rank_records(
    records: list[DerivedRecord], policy: SortPolicy, top_n: int | None = None
) -> list[DerivedRecord]:
    """ソート → 上位 N 件に切り詰め → 順位付け."""
    ordered = sort_records(records, policy)
    if top_n is not None:
        ordered = ordered[:top_n]
    return assign_ranks(ordered)


def partition_by_tag(records: list[DerivedRecord]) -> dict[str, list[DerivedRecord]]:
    """タグごとにレコードを振り分ける.

    1 商品は持っているタグの数だけのパーティションに入る。タグなしはどこにも入らない。
    パーティションのキー順は初出順。
    """
    partitions: dict[str, list[DerivedRecord]] = {}
    for r in records:
        for tag in dict.fromkeys(r.tags):
            partitions.setdefault(tag, []).append(r)
    return partitions


def rank_partitions(
    records: list[DerivedRecord], policy: SortPolicy, top_n: int | None = None
) -> dict[str, list[DerivedRecord]]:
    """タグ別に独立してランキングする. 同じ商品でもパーティションごとに順位が異なる."""
    ranked = {
        tag: rank_records(members, policy, top_n)
        for tag, members in partition_by_tag(records).items()
    }
    logger.info("タグ別ランキング: %d タグ", len(ranked))
    return ranked
