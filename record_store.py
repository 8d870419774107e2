# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# record_store.py
#
# xEdit / Mutagen 系ツールが書き出したレコード JSON を読み込み、
# InMemoryRecordStore を構築する。
#
# 想定フォーマット:
#   {
#     "schema_version": "mutagen_v51" | "xedit" | 省略,
#     "load_order": ["Fallout4.esm", "Mod.esp", ...],
#     "records": [
#       {"form_key": "Mod.esp:00000800", "category": "WEAP",
#        "editor_id": "MyRifle", "fields": {"Ammo": "Fallout4.esm:0001F276"}},
#       ...
#     ]
#   }
#
# リンク値は 'Plugin.esp:XXXXXXXX' か、xEdit 形式の
# 'EditorID "Name" [AMMO:0101F276]' (上位 8bit がロードオーダー番号)。
# フィールド値は最初にアクセスされた時点でデコードする。
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from errors import FieldAccessError, RecordStoreError
from form_key import FormKey, normalize_plugin_name, parse_raw_identity, try_parse
from records import FormLink, InMemoryRecordStore, LazyField, Record
from schema import SchemaVersion, normalize_category
from utils import read_text_utf8_fallback

_FORM_KEY_TEXT = re.compile(r"^\s*[^:|\[\]]+\.(esp|esm|esl)\s*[:|]\s*(0x)?[0-9a-fA-F]{1,8}\s*$", re.IGNORECASE)
_XEDIT_LINK = re.compile(r"\[([A-Z0-9_]{4}):([0-9a-fA-F]{8})\]\s*$")
_XEDIT_NULL = re.compile(r"^\s*NULL\s*-\s*Null Reference", re.IGNORECASE)


class JsonRecordStore(InMemoryRecordStore):
    """JSON エクスポートから読み込んだレコードストア。"""

    def __init__(self, schema_version: SchemaVersion = SchemaVersion.UNKNOWN, load_order=()):
        super().__init__(load_order=load_order)
        self.schema_version = schema_version
        self.skipped_records = 0

    @classmethod
    def from_file(cls, path: Path) -> "JsonRecordStore":
        path = Path(path)
        if not path.is_file():
            raise RecordStoreError(f"レコードファイルが見つかりません: {path}")
        try:
            data = json.loads(read_text_utf8_fallback(path))
        except json.JSONDecodeError as e:
            raise RecordStoreError(f"{path.name} の JSON 解析に失敗: {e}") from e
        store = cls.from_dict(data)
        logging.info(
            f"[RecordStore] {path.name} から {len(store)} 件のレコードを読み込みました "
            f"(schema={store.schema_version.value}, スキップ={store.skipped_records})"
        )
        return store

    @classmethod
    def from_dict(cls, data: dict) -> "JsonRecordStore":
        if not isinstance(data, dict) or not isinstance(data.get("records"), list):
            raise RecordStoreError("'records' 配列を含むオブジェクトが必要です")
        load_order = [str(p) for p in data.get("load_order", [])]
        version = probe_schema_version(data)
        store = cls(schema_version=version, load_order=load_order)
        for raw in data["records"]:
            record = _build_record(raw, load_order)
            if record is None:
                store.skipped_records += 1
                continue
            store.add(record)
        return store


def probe_schema_version(data: dict) -> SchemaVersion:
    """ファイルのメタデータ、なければフィールド名の書式からスキーマを推定する。"""
    declared = data.get("schema_version")
    if declared:
        return SchemaVersion.from_string(str(declared))
    for raw in data.get("records", [])[:50]:
        names = (raw.get("fields") or {}).keys() if isinstance(raw, dict) else ()
        if any(" - " in name for name in names):
            return SchemaVersion.XEDIT_EXPORT
    return SchemaVersion.UNKNOWN


def _build_record(raw: Any, load_order: list[str]):
    if not isinstance(raw, dict):
        logging.debug(f"[RecordStore] レコード形式が不正なためスキップ: {raw!r}")
        return None
    key = None
    if isinstance(raw.get("form_key"), str):
        key = try_parse(raw["form_key"])
    if key is None:
        key = parse_raw_identity({k: v for k, v in raw.items() if k != "fields"})
    if key is None:
        logging.debug(f"[RecordStore] FormKey を特定できないためスキップ: {raw.get('editor_id', '')}")
        return None
    plugin = normalize_plugin_name(key.plugin)
    if plugin != key.plugin:
        key = FormKey(plugin, key.local_id)
    fields = {
        name: LazyField(lambda value=value: decode_value(value, load_order))
        for name, value in (raw.get("fields") or {}).items()
    }
    return Record(
        form_key=key,
        category=raw.get("category") or raw.get("signature") or "",
        editor_id=raw.get("editor_id") or raw.get("EditorID") or "",
        fields=fields,
    )


def decode_value(value: Any, load_order: list[str]):
    """JSON 値をリンク・リスト・辞書に再帰的にデコードする。"""
    if isinstance(value, list):
        return [decode_value(v, load_order) for v in value]
    if isinstance(value, dict):
        return {k: decode_value(v, load_order) for k, v in value.items()}
    if isinstance(value, str):
        return _decode_link_text(value, load_order)
    return value


def _decode_link_text(text: str, load_order: list[str]):
    if _XEDIT_NULL.match(text):
        return FormLink(None)
    if _FORM_KEY_TEXT.match(text):
        return FormLink(try_parse(text))
    match = _XEDIT_LINK.search(text)
    if match:
        signature, hex_id = match.group(1), match.group(2)
        full_id = int(hex_id, 16)
        index = full_id >> 24
        if index >= len(load_order):
            raise FieldAccessError(text, signature, IndexError(f"ロードオーダー番号 {index:02X} が範囲外です"))
        key = FormKey.try_create(load_order[index], full_id & 0x00FFFFFF)
        return FormLink(key, normalize_category(signature))
    return text
