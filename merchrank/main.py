"""ストア商品ランキング生成: メインエントリーポイント.

処理フロー:
  1. 商品カタログと注文履歴を全ページ取得
  2. 注文明細を商品キーに突き合わせて販売実績を集計
  3. ジョブごとにスコア計算・ソート・順位付け
  4. JSON ファイルに書き出し
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from merchrank.client import CollectorError
from merchrank.config import (
    API_VERSION,
    LOG_DIR,
    ORDERS_SINCE,
    OUTPUT_DIR,
    WEIGHT_REVENUE,
    WEIGHT_STOCK,
    WEIGHT_UNITS,
    ConfigError,
    get_credentials,
)
from merchrank.models import JoinKey, ScoreWeights
from merchrank.pipeline import JOBS, run_jobs

EXIT_OK = 0
EXIT_FETCH_FAILED = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(level: str = "INFO") -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"merchrank_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Shopify の商品・注文からマーチャンダイジング用ランキング JSON を生成する."
    )
    parser.add_argument(
        "--job",
        action="append",
        choices=sorted(JOBS),
        default=[],
        help="生成するランキング (複数指定可). 省略時は全て.",
    )
    parser.add_argument(
        "--join-key",
        choices=[k.value for k in JoinKey],
        default=JoinKey.HANDLE.value,
        help="販売実績の集計キー.",
    )
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR)
    parser.add_argument("--api-version", default=API_VERSION)
    parser.add_argument(
        "--orders-since",
        default=ORDERS_SINCE,
        help="集計対象とする注文の作成日下限 (YYYY-MM-DD).",
    )
    parser.add_argument(
        "--top-n",
        type=int,
        default=None,
        help="タグ別ランキングの上位件数.",
    )
    parser.add_argument("--weight-revenue", type=float, default=WEIGHT_REVENUE)
    parser.add_argument("--weight-units", type=float, default=WEIGHT_UNITS)
    parser.add_argument("--weight-stock", type=float, default=WEIGHT_STOCK)
    parser.add_argument(
        "--with-ratings",
        action="store_true",
        help="レビューアプリから評価を取得する (失敗しても続行).",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.top_n is not None and args.top_n <= 0:
        parser.error("--top-n must be greater than 0")

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)
    logger.info("=== ランキング生成 開始 ===")
    start_time = time.time()

    try:
        domain, token = get_credentials()
    except ConfigError as e:
        logger.error("設定エラー: %s", e)
        return EXIT_CONFIG_ERROR

    jobs = [JOBS[name] for name in dict.fromkeys(args.job or JOBS)]
    weights = ScoreWeights(args.weight_revenue, args.weight_units, args.weight_stock)

    try:
        counts = run_jobs(
            jobs,
            domain=domain,
            token=token,
            version=args.api_version,
            orders_since=args.orders_since,
            output_dir=args.output_dir,
            join_key=JoinKey(args.join_key),
            weights=weights,
            top_n=args.top_n,
            with_ratings=args.with_ratings,
        )
    except CollectorError as e:
        logger.error("取得失敗のため中断しました: %s", e)
        return EXIT_FETCH_FAILED

    # サマリ
    elapsed = time.time() - start_time
    for name, count in counts.items():
        unit = "タグ" if JOBS[name].partition_by_tag else "件"
        logger.info("%s: %d %s", name, count, unit)
    logger.info("=== ランキング生成 完了 (所要時間: %.1f 秒) ===", elapsed)
    return EXIT_OK


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
