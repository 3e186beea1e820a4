"""設定モジュール: 環境変数・定数定義."""

import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


class ConfigError(RuntimeError):
    """必須設定が不足している."""


# --- Shopify Admin API ---
API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-04")
API_BASE_TEMPLATE = "https://{domain}/admin/api/{version}"
ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"

# API 上限。変更不可
PAGE_SIZE = 250
REQUEST_TIMEOUT = 30  # 秒

PRODUCT_FIELDS = (
    "id,title,handle,images,variants,tags,product_type,vendor,"
    "created_at,published_at,status"
)
ORDER_FIELDS = "line_items,financial_status"

# レビューアプリ (任意)
RATINGS_PATH = "/apps/product-reviews/api/reviews"

# --- 集計 ---
EXCLUDED_FINANCIAL_STATUSES = frozenset({"voided", "refunded"})
ORDERS_SINCE = os.environ.get("MERCHRANK_ORDERS_SINCE", "2024-01-01")

# --- スコアリング ---
WEIGHT_REVENUE = float(os.environ.get("MERCHRANK_WEIGHT_REVENUE", "0.5"))
WEIGHT_UNITS = float(os.environ.get("MERCHRANK_WEIGHT_UNITS", "0.3"))
WEIGHT_STOCK = float(os.environ.get("MERCHRANK_WEIGHT_STOCK", "0.2"))

HEURISTIC_STOCK_BONUS = 50.0
HEURISTIC_REVENUE_FACTOR = 0.01
HEURISTIC_UNITS_FACTOR = 100.0

SCORE_DECIMALS = 4
REVENUE_QUANTUM = Decimal("0.01")

# --- ランキング ---
TOP_N = int(os.environ.get("MERCHRANK_TOP_N", "50"))

# --- 出力 ---
OUTPUT_DIR = Path(os.environ.get("MERCHRANK_OUTPUT_DIR", "output"))
TAG_RANKINGS_DIRNAME = "tag-rankings"
ALL_TAG_RANKINGS_FILE = "all-tag-rankings.json"

# --- ログ ---
LOG_DIR = Path(os.environ.get("MERCHRANK_LOG_DIR", _PROJECT_ROOT / "logs"))


def get_credentials() -> tuple[str, str]:
    """ストアドメインとアクセストークンを取得する.

    Raises:
        ConfigError: どちらかが未設定の場合
    """
    try:
        return os.environ["SHOPIFY_STORE_DOMAIN"], os.environ["SHOPIFY_API_TOKEN"]
    except KeyError as e:
        raise ConfigError(f"環境変数 {e.args[0]} が設定されていません") from e
