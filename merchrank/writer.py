"""ランキング JSON の出力モジュール.

各ファイルは一時ファイルに書き切ってから置き換えるため、途中終了しても
壊れたファイルは残らない。既存ファイルは常に上書きする。
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from merchrank.config import ALL_TAG_RANKINGS_FILE
from merchrank.models import DerivedRecord, RankingJob

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^a-z0-9-]")


def tag_slug(tag: str) -> str:
    """タグからファイル名用の slug を作る (例: "Summer Sale!" → "summer-sale")."""
    slug = _UNSAFE_RE.sub("", _WHITESPACE_RE.sub("-", tag.lower()))
    return slug or "untagged"


def write_json(path: Path, payload: Any) -> None:
    """JSON を原子的に書き込む."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_ranking(output_dir: Path, job: RankingJob, records: list[DerivedRecord]) -> Path:
    """ランキング 1 件を書き込む.

    Returns:
        書き込んだファイルのパス
    """
    path = output_dir / job.output_name
    write_json(path, [r.to_dict(job.fields) for r in records])
    logger.info("%s に %d 件書き込み", path, len(records))
    return path


def write_tag_rankings(
    output_dir: Path, job: RankingJob, partitions: dict[str, list[DerivedRecord]]
) -> list[Path]:
    """タグ別ファイルと全タグまとめファイルを書き込む.

    slug が重複するタグには -2, -3 ... を付ける。
    """
    tag_dir = output_dir / job.output_name
    written: list[Path] = []
    used: set[str] = set()

    for tag, records in partitions.items():
        base = tag_slug(tag)
        slug = base
        suffix = 2
        while slug in used:
            slug = f"{base}-{suffix}"
            suffix += 1
        used.add(slug)

        path = tag_dir / f"{slug}-rankings.json"
        write_json(path, [r.to_dict(job.fields) for r in records])
        logger.info("%s に %d 件書き込み", path.name, len(records))
        written.append(path)

    master = tag_dir / ALL_TAG_RANKINGS_FILE
    write_json(master, {
        tag: [r.to_dict(job.fields) for r in records]
        for tag, records in partitions.items()
    })
    logger.info("%s に %d タグ書き込み", master.name, len(partitions))
    written.append(master)
    return written
