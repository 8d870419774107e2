# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# records.py
#
# レコードグラフの最小モデル (Record / FormLink) とメモリ上のレコードストア。
# =============================================================================

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from errors import FieldAccessError
from form_key import FormKey
from schema import normalize_category

_UNSET = object()


class LazyField:
    """アクセス時に初めてデコードされるフィールド値。デコード失敗は FieldAccessError になる。"""

    def __init__(self, loader: Callable[[], Any]):
        self._loader = loader
        self._value = _UNSET

    def load(self, record_label: str, field_name: str):
        if self._value is _UNSET:
            try:
                self._value = self._loader()
            except FieldAccessError:
                raise
            except Exception as e:
                raise FieldAccessError(record_label, field_name, e) from e
        return self._value


@dataclass(frozen=True)
class FormLink:
    """
    他レコードへの参照。form_key が None の場合は NULL 参照。
    target_category は参照先カテゴリのヒント (不明なら None)。
    """
    form_key: Optional[FormKey]
    target_category: Optional[str] = None

    @property
    def is_null(self) -> bool:
        return self.form_key is None

    def resolve(self, store):
        if self.form_key is None:
            return None
        if self.target_category:
            return store.resolve(self.form_key, self.target_category)
        return store.resolve(self.form_key)

    def __str__(self):
        return str(self.form_key) if self.form_key else "NULL"


@dataclass(eq=False)
class Record:
    """ロードオーダー上の 1 レコード。fields は挿入順を保持する。"""
    form_key: FormKey
    category: str
    editor_id: str = ""
    fields: dict = field(default_factory=dict)

    def __post_init__(self):
        self.category = normalize_category(self.category)

    @property
    def plugin(self) -> str:
        return self.form_key.plugin

    @property
    def label(self) -> str:
        return self.editor_id or str(self.form_key)

    def field_names(self) -> list[str]:
        return list(self.fields.keys())

    def get(self, name: str, default=None):
        value = self.fields.get(name, default)
        if isinstance(value, LazyField):
            return value.load(self.label, name)
        return value

    def __repr__(self):
        return f"Record({self.category} {self.form_key} {self.editor_id!r})"


class InMemoryRecordStore:
    """
    カテゴリごとの勝者レコードを保持するストア。

    add() はロードオーダー順に呼ぶこと。同じ FormKey のレコードは後から追加したものが勝つ。
    """

    def __init__(self, records: Iterable[Record] = (), load_order: Iterable[str] = ()):
        self._by_category: "OrderedDict[str, OrderedDict[FormKey, Record]]" = OrderedDict()
        self._by_key: dict[FormKey, Record] = {}
        self.load_order: list[str] = list(load_order)
        for record in records:
            self.add(record)

    def add(self, record: Record) -> None:
        previous = self._by_key.get(record.form_key)
        if previous is not None and previous.category != record.category:
            self._by_category[previous.category].pop(record.form_key, None)
        bucket = self._by_category.setdefault(record.category, OrderedDict())
        bucket[record.form_key] = record
        self._by_key[record.form_key] = record
        if record.plugin.lower() not in (p.lower() for p in self.load_order):
            self.load_order.append(record.plugin)

    def winning_records(self, category: str) -> list[Record]:
        return list(self._by_category.get(normalize_category(category), {}).values())

    def all_categories(self) -> list[tuple[str, list[Record]]]:
        return [(name, list(bucket.values())) for name, bucket in self._by_category.items()]

    def resolve(self, identity: FormKey, category: str | None = None) -> Optional[Record]:
        record = self._by_key.get(identity)
        if record is None:
            return None
        if category and record.category != normalize_category(category):
            logging.debug(f"[Store] カテゴリ不一致: {identity} は {record.category} ({category} を要求)")
            return None
        return record

    def __len__(self):
        return len(self._by_key)
