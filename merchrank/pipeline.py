"""ランキング生成パイプライン.

処理フロー:
  1. 商品・注文を全件取得
  2. 商品キー別に販売実績を集計
  3. ジョブごとに派生レコードを計算・ソート・順位付け
  4. 全ジョブ成功後にまとめて書き込み
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import requests

from merchrank.accrual import ProductIndex, accrue_sales
from merchrank.client import (
    build_session,
    fetch_catalog_and_orders,
    fetch_product_ratings,
    fetch_products,
)
from merchrank.config import TAG_RANKINGS_DIRNAME, TOP_N
from merchrank.models import (
    DerivedRecord,
    JoinKey,
    OrderRecord,
    ProductRecord,
    RankingJob,
    SalesAccrual,
    ScoreWeights,
    ScoringPolicy,
    SortPolicy,
)
from merchrank.ranking import rank_partitions, rank_records
from merchrank.scoring import derive_records
from merchrank.writer import write_ranking, write_tag_rankings

logger = logging.getLogger(__name__)

_SALES_FIELDS = ("handle", "title", "in_stock", "units_sold", "revenue")

JOBS: dict[str, RankingJob] = {
    job.name: job
    for job in (
        RankingJob(
            name="merch-rank",
            scoring=ScoringPolicy.NONE,
            sort=SortPolicy.STOCK_RECENCY,
            fields=("handle", "in_stock"),
            output_name="merch-rank.json",
            needs_orders=False,
        ),
        RankingJob(
            name="sales-rank",
            scoring=ScoringPolicy.WEIGHTED,
            sort=SortPolicy.SCORE,
            fields=_SALES_FIELDS + ("revenue_score", "unit_score", "score", "rank"),
            output_name="sales-rank.json",
        ),
        RankingJob(
            name="trending",
            scoring=ScoringPolicy.HEURISTIC,
            sort=SortPolicy.SCORE,
            fields=_SALES_FIELDS + ("score", "rank"),
            output_name="trending.json",
        ),
        RankingJob(
            name="best-sellers",
            scoring=ScoringPolicy.NONE,
            sort=SortPolicy.REVENUE_UNITS_STOCK,
            fields=_SALES_FIELDS + ("rank",),
            output_name="best-sellers.json",
        ),
        RankingJob(
            name="tag-rankings",
            scoring=ScoringPolicy.NONE,
            sort=SortPolicy.UNITS_SOLD,
            fields=(
                "handle", "title", "featured_image", "price", "on_sale", "price_range",
                "vendor", "product_type", "rating", "review_count", "units_sold",
                "revenue", "in_stock", "tags", "created_at", "published_at", "rank",
            ),
            output_name=TAG_RANKINGS_DIRNAME,
            partition_by_tag=True,
            top_n=TOP_N,
        ),
    )
}


def build_job(
    job: RankingJob,
    products: list[ProductRecord],
    accruals: Mapping[int | str, SalesAccrual],
    join_key: JoinKey,
    weights: ScoreWeights | None = None,
    ratings: Mapping[str, tuple[float, int]] | None = None,
    top_n: int | None = None,
) -> list[DerivedRecord] | dict[str, list[DerivedRecord]]:
    """1 ジョブ分のランキングを計算する. 副作用なし."""
    records = derive_records(products, accruals, join_key, job.scoring, weights, ratings)
    # top_n の上書きは切り詰めありのジョブのみ
    limit = top_n if top_n is not None and job.top_n is not None else job.top_n
    if job.partition_by_tag:
        return rank_partitions(records, job.sort, limit)
    return rank_records(records, job.sort, limit)


def build_rankings(
    jobs: list[RankingJob],
    products: list[ProductRecord],
    orders: list[OrderRecord],
    join_key: JoinKey = JoinKey.HANDLE,
    weights: ScoreWeights | None = None,
    ratings: Mapping[str, tuple[float, int]] | None = None,
    top_n: int | None = None,
) -> dict[str, list[DerivedRecord] | dict[str, list[DerivedRecord]]]:
    """取得済みデータから全ジョブのランキングを計算する."""
    index = ProductIndex.build([p for p in products if p.is_visible], join_key)
    accruals = accrue_sales(orders, index)
    return {
        job.name: build_job(job, products, accruals, join_key, weights, ratings, top_n)
        for job in jobs
    }


def write_results(
    output_dir: Path,
    jobs: list[RankingJob],
    results: dict[str, list[DerivedRecord] | dict[str, list[DerivedRecord]]],
) -> dict[str, int]:
    """計算結果を書き込み、ジョブ名 → 件数 (タグ別はタグ数) を返す."""
    counts: dict[str, int] = {}
    for job in jobs:
        result = results[job.name]
        if job.partition_by_tag:
            write_tag_rankings(output_dir, job, result)
        else:
            write_ranking(output_dir, job, result)
        counts[job.name] = len(result)
    return counts


def run_jobs(
    jobs: list[RankingJob],
    domain: str,
    token: str,
    version: str,
    orders_since: str,
    output_dir: Path,
    join_key: JoinKey = JoinKey.HANDLE,
    weights: ScoreWeights | None = None,
    top_n: int | None = None,
    with_ratings: bool = False,
) -> dict[str, int]:
    """取得 → 計算 → 書き込みを実行する.

    取得失敗 (CollectorError) は捕捉しない。その場合ファイルは一切書き込まれない。
    """
    if any(job.needs_orders for job in jobs):
        products, orders = fetch_catalog_and_orders(token, domain, version, orders_since)
    else:
        with build_session(token) as session:
            products = fetch_products(session, domain, version)
        orders = []

    ratings: dict[str, tuple[float, int]] = {}
    if with_ratings:
        with requests.Session() as session:
            ratings = fetch_product_ratings(session, domain, [p.handle for p in products])

    results = build_rankings(jobs, products, orders, join_key, weights, ratings, top_n)
    return write_results(output_dir, jobs, results)
