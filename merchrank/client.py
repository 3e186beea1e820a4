"""Shopify Admin API のページング取得モジュール.

取得戦略:
  1. 初回は クエリパラメータ付きで取得
  2. 2 ページ目以降は Link ヘッダの rel="next" URL をそのまま再リクエスト
     (page_info 方式・絶対 URL 方式どちらにも対応)

1 ページでも失敗した場合は CollectorError で実行全体を中断する.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait

import requests

from merchrank.config import (
    ACCESS_TOKEN_HEADER,
    API_BASE_TEMPLATE,
    ORDER_FIELDS,
    PAGE_SIZE,
    PRODUCT_FIELDS,
    RATINGS_PATH,
    REQUEST_TIMEOUT,
)
from merchrank.models import OrderRecord, ProductRecord

logger = logging.getLogger(__name__)


class CollectorError(RuntimeError):
    """ページ取得またはレスポンス形式の異常. 復旧せず実行を中断する."""


def build_session(token: str) -> requests.Session:
    """アクセストークン付きのセッションを作成する."""
    session = requests.Session()
    session.headers.update({
        ACCESS_TOKEN_HEADER: token,
        "Accept": "application/json",
        "Content-Type": "application/json",
    })
    return session


def parse_next_link(header: str | None) -> str | None:
    """Link ヘッダから rel="next" の URL を取り出す.

    Returns:
        次ページ URL (クエリ含めそのまま)。なければ None。
    """
    if not header:
        return None
    for link in requests.utils.parse_header_links(header):
        if link.get("rel") == "next" and link.get("url"):
            return link["url"]
    return None


def fetch_page(
    session: requests.Session, url: str, params: dict | None = None
) -> tuple[dict, str | None]:
    """1 ページ取得し、(JSON ボディ, 次ページ URL) を返す."""
    try:
        resp = session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise CollectorError(f"ページ取得失敗: url={url}, error={e}") from e

    try:
        body = resp.json()
    except ValueError as e:
        raise CollectorError(f"JSON パース失敗: url={url}") from e
    if not isinstance(body, dict):
        raise CollectorError(f"想定外のレスポンス形式: url={url}")

    return body, parse_next_link(resp.headers.get("Link"))


def collect_all(
    session: requests.Session,
    url: str,
    params: dict | None,
    key: str,
    cancel: threading.Event | None = None,
) -> list[dict]:
    """全ページを順番に取得し、key 配列を連結して返す.

    cancel がセットされたら次のページを取得せずに CollectorError で中断する。
    """
    items: list[dict] = []
    next_url: str | None = url
    next_params = params
    page = 0

    while next_url:
        if cancel is not None and cancel.is_set():
            raise CollectorError(f"{key}: 他の取得が失敗したため中断 (page={page + 1})")
        body, following = fetch_page(session, next_url, next_params)
        page += 1
        chunk = body.get(key)
        if not isinstance(chunk, list):
            raise CollectorError(f"レスポンスに {key} 配列がありません: page={page}")
        items.extend(chunk)
        logger.info("%s: %d ページ目 %d 件 (累計 %d 件)", key, page, len(chunk), len(items))

        # cursor URL にはクエリが全て含まれるため params は初回のみ
        next_url = following
        next_params = None

    return items


def _base_url(domain: str, version: str) -> str:
    return API_BASE_TEMPLATE.format(domain=domain, version=version)


def fetch_products(
    session: requests.Session,
    domain: str,
    version: str,
    cancel: threading.Event | None = None,
) -> list[ProductRecord]:
    """公開中の商品を全件取得する. published_at のない商品は除外."""
    raw = collect_all(
        session,
        f"{_base_url(domain, version)}/products.json",
        {"limit": PAGE_SIZE, "status": "active", "fields": PRODUCT_FIELDS},
        "products",
        cancel,
    )
    products = [ProductRecord.from_api(p) for p in raw]
    visible = [p for p in products if p.is_visible]
    logger.info("商品取得: %d 件 (公開中 %d 件)", len(products), len(visible))
    return visible


def fetch_orders(
    session: requests.Session,
    domain: str,
    version: str,
    since: str,
    cancel: threading.Event | None = None,
) -> list[OrderRecord]:
    """since 以降に作成された注文を全件取得する."""
    raw = collect_all(
        session,
        f"{_base_url(domain, version)}/orders.json",
        {
            "limit": PAGE_SIZE,
            "status": "any",
            "created_at_min": since,
            "fields": ORDER_FIELDS,
        },
        "orders",
        cancel,
    )
    logger.info("注文取得: %d 件", len(raw))
    return [OrderRecord.from_api(o) for o in raw]


def fetch_catalog_and_orders(
    token: str, domain: str, version: str, since: str
) -> tuple[list[ProductRecord], list[OrderRecord]]:
    """商品と注文を並行して取得する.

    id → キーの対応付けは集計時に行うため、2 つのコレクションは互いに独立。
    セッションはタスクごとに分け、タスク終了時に閉じる。
    どちらかが失敗した場合はもう一方を次のページ取得前に中断させ、
    最初の例外を送出する。
    """
    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=2) as executor:
        products_future = executor.submit(
            _closing_task, build_session(token), fetch_products, domain, version, cancel
        )
        orders_future = executor.submit(
            _closing_task, build_session(token), fetch_orders, domain, version, since, cancel
        )
        done, _ = wait([products_future, orders_future], return_when=FIRST_EXCEPTION)
        for future in done:
            if future.exception() is not None:
                cancel.set()
                logger.error("並行取得の一方が失敗したため残りを中断します")
                raise future.exception()
        return products_future.result(), orders_future.result()


def _closing_task(session: requests.Session, fetch, *args):
    """fetch(session, *args) を実行し、終了時にセッションを閉じる."""
    with session:
        return fetch(session, *args)


def fetch_product_ratings(
    session: requests.Session, domain: str, handles: list[str]
) -> dict[str, tuple[float, int]]:
    """レビューアプリから handle 別の (平均評価, 件数) を取得する.

    任意の付加情報のため、失敗時は警告を出して空 dict を返す。
    """
    if not handles:
        return {}

    try:
        resp = session.get(
            f"https://{domain}{RATINGS_PATH}",
            params={"handles": ",".join(handles)},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        reviews = resp.json().get("reviews") or []
    except (requests.RequestException, ValueError, AttributeError) as e:
        logger.warning("レビュー取得失敗: %s", e)
        return {}

    totals: dict[str, list[float]] = {}
    for review in reviews:
        if not isinstance(review, dict):
            continue
        handle = review.get("product_handle")
        rating = review.get("rating")
        if not handle or not isinstance(rating, (int, float)):
            continue
        bucket = totals.setdefault(handle, [0.0, 0])
        bucket[0] += rating
        bucket[1] += 1

    return {handle: (total / count, int(count)) for handle, (total, count) in totals.items()}
