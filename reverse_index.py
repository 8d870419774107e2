# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# reverse_index.py
#
# 「どのレコードのどのフィールドがこの FormKey を参照しているか」の逆引きインデックス。
# 処理パスの最初に 1 回だけ構築し、以後は読み取り専用で使う。
# =============================================================================

from __future__ import annotations

import enum
import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from errors import FieldAccessError, OperationCancelled
from form_key import FormKey, extract_identity
from records import Record


class Outcome(enum.Enum):
    """レコード / フィールド単位の処理結果。"""
    OK = "ok"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class ReferenceEntry:
    record: Record
    field_name: str
    value: Any


class ReverseReferenceIndex(Mapping):
    """FormKey -> 参照元エントリ (タプル) の読み取り専用マッピング。"""

    def __init__(self, buckets: dict, stats: Counter | None = None):
        self._buckets = {key: tuple(entries) for key, entries in buckets.items()}
        self.stats = stats or Counter()

    def __getitem__(self, key: FormKey):
        return self._buckets[key]

    def __iter__(self):
        return iter(self._buckets)

    def __len__(self):
        return len(self._buckets)

    def references_to(self, key: Optional[FormKey]) -> tuple:
        if key is None:
            return ()
        return self._buckets.get(key, ())

    @property
    def entry_count(self) -> int:
        return sum(len(v) for v in self._buckets.values())


def identities_in(value: Any) -> list[FormKey]:
    """フィールド値 (単一値またはリスト) に含まれる FormKey を順に返す。"""
    if isinstance(value, (list, tuple)) and not _is_identity_tuple(value):
        keys = []
        for item in value:
            keys.extend(_identities_of_item(item))
        return keys
    return _identities_of_item(value)


def _identities_of_item(item: Any) -> list[FormKey]:
    key = extract_identity(item)
    if key is not None:
        return [key]
    # OMOD のプロパティ行のような {名前: 値} は値を 1 段だけ見る
    if isinstance(item, dict):
        return [k for k in (extract_identity(v) for v in item.values()) if k is not None]
    return []


def _is_identity_tuple(value) -> bool:
    return isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str)


def _index_field(record: Record, name: str, buckets: dict) -> Outcome:
    try:
        value = record.get(name)
    except FieldAccessError as e:
        logging.debug(f"[ReverseIndex] フィールド読み取り失敗: {e}")
        return Outcome.ERROR
    keys = identities_in(value)
    if not keys:
        return Outcome.SKIPPED
    for key in keys:
        buckets.setdefault(key, []).append(ReferenceEntry(record, name, value))
    return Outcome.OK


def build(categories: Iterable, excluded_plugins: Iterable[str] = (), cancellation=None) -> ReverseReferenceIndex:
    """
    全カテゴリの全レコード・全フィールドを走査してインデックスを構築する。

    :param categories: (カテゴリ名, レコード列) の列。store.all_categories() の戻り値をそのまま渡せる。
    :param excluded_plugins: 参照元として数えないプラグイン名 (大文字小文字は区別しない)。
    :param cancellation: raise_if_cancelled() を持つキャンセルトークン。
    """
    excluded = {p.lower() for p in excluded_plugins}
    buckets: dict = {}
    stats = Counter()

    for category_name, records in categories:
        for record in records:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            stats["records_scanned"] += 1
            try:
                if record.plugin.lower() in excluded:
                    stats["records_excluded"] += 1
                    continue
                for name in record.field_names():
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    stats[f"fields_{_index_field(record, name, buckets).value}"] += 1
            except OperationCancelled:
                raise
            except Exception as e:
                stats["records_error"] += 1
                logging.debug(f"[ReverseIndex] {category_name} のレコード処理に失敗: {e}")

    index = ReverseReferenceIndex(buckets, stats)
    logging.info(
        f"[ReverseIndex] 構築完了: キー {len(index)} 件 / 参照 {index.entry_count} 件 "
        f"(走査 {stats['records_scanned']}, 除外 {stats['records_excluded']}, "
        f"フィールドエラー {stats['fields_error']})"
    )
    return index
