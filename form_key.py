# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# form_key.py
#
# レコードを一意に識別する FormKey (プラグイン名 + ローカルID) と、
# 任意のオブジェクトから FormKey を取り出す共通ルーチン。
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

NULL_PLUGIN_SENTINELS = frozenset({"null", "<null>", "none"})
MAX_LOCAL_ID = 0xFFFFFFFF
KNOWN_PLUGIN_EXTENSIONS = (".esp", ".esm", ".esl")
_HEX_ID = re.compile(r"(?:0x)?([0-9a-f]+)")


def normalize_form_id(value) -> Optional[str]:
    """
    FormID 表記を 8 桁の小文字 16 進文字列に正規化する。
    '0x' 接頭辞は省略可。16 進数字以外を含む文字列は None、9 桁以上なら下位 8 桁を使う。
    """
    if value is None:
        return None
    if isinstance(value, int):
        if value < 0:
            return None
        return f"{value & MAX_LOCAL_ID:08x}"
    match = _HEX_ID.fullmatch(str(value).strip().lower())
    if match is None:
        return None
    digits = match.group(1)
    if len(digits) > 8:
        digits = digits[-8:]
    return digits.rjust(8, "0")


def normalize_plugin_name(name: str | None, default_extension: str = ".esp") -> str:
    """プラグイン名の前後空白を除き、拡張子がなければ既定の拡張子を付ける。"""
    text = (name or "").strip().strip('"')
    if not text:
        return ""
    if not text.lower().endswith(KNOWN_PLUGIN_EXTENSIONS):
        text = f"{text}{default_extension}"
    return text


def has_plugin_extension(name) -> bool:
    return isinstance(name, str) and name.strip().lower().endswith(KNOWN_PLUGIN_EXTENSIONS)


def is_valid_plugin_name(name) -> bool:
    if not isinstance(name, str):
        return False
    text = name.strip()
    return bool(text) and text.lower() not in NULL_PLUGIN_SENTINELS


@dataclass(frozen=True, eq=False)
class FormKey:
    """
    レコードの識別子。

    プラグイン名の比較は大文字小文字を区別しない。ローカルIDは 0 を除く 32bit 値。
    不正な値で生成しようとすると ValueError を送出する。
    """
    plugin: str
    local_id: int

    def __post_init__(self):
        if not is_valid_plugin_name(self.plugin):
            raise ValueError(f"不正なプラグイン名です: {self.plugin!r}")
        if isinstance(self.local_id, bool) or not isinstance(self.local_id, int):
            raise ValueError(f"ローカルIDは整数である必要があります: {self.local_id!r}")
        if not 0 < self.local_id <= MAX_LOCAL_ID:
            raise ValueError(f"ローカルIDが範囲外です: {self.local_id!r}")
        object.__setattr__(self, "plugin", self.plugin.strip())

    @property
    def plugin_key(self) -> str:
        return self.plugin.lower()

    def __eq__(self, other):
        if not isinstance(other, FormKey):
            return NotImplemented
        return self.plugin_key == other.plugin_key and self.local_id == other.local_id

    def __hash__(self):
        return hash((self.plugin_key, self.local_id))

    def __str__(self):
        return f"{self.plugin}:{self.local_id:08X}"

    def __repr__(self):
        return f"FormKey({str(self)!r})"

    @property
    def hex_id(self) -> str:
        return f"{self.local_id:08X}"

    @classmethod
    def try_create(cls, plugin, local_id) -> Optional["FormKey"]:
        """値が不正な場合は例外ではなく None を返す。"""
        if isinstance(local_id, str):
            normalized = normalize_form_id(local_id)
            if normalized is None:
                return None
            local_id = int(normalized, 16)
        try:
            return cls(plugin, local_id)
        except (TypeError, ValueError):
            return None

    @classmethod
    def parse(cls, text: str) -> "FormKey":
        """'Plugin.esp:0000ABCD' または 'Plugin.esp|ABCD' 形式の文字列を解釈する。"""
        key = try_parse(text)
        if key is None:
            raise ValueError(f"FormKey として解釈できません: {text!r}")
        return key


def try_parse(text) -> Optional[FormKey]:
    """
    'Plugin.esp:0000ABCD' 形式の文字列を FormKey にする。
    プラグイン部に .esp/.esm/.esl の拡張子がなければ通常のテキストとみなして None。
    """
    if not isinstance(text, str):
        return None
    raw = text.strip()
    for sep in (":", "|"):
        if sep in raw:
            plugin, _, local = raw.rpartition(sep)
            if has_plugin_extension(plugin) and local:
                return FormKey.try_create(plugin.strip(), local.strip())
            return None
    return None


def extract_identity(value: Any) -> Optional[FormKey]:
    """
    任意の値から FormKey を取り出す共通ルーチン。

    FormKey そのもの、form_key 属性を持つオブジェクト (Record や FormLink)、
    'plugin:id' 形式の文字列、(plugin, id) のタプル、plugin/form_id キーを持つ辞書を受け付ける。
    取り出せない場合は None。
    """
    if value is None:
        return None
    if isinstance(value, FormKey):
        return value
    nested = getattr(value, "form_key", None)
    if nested is not None:
        return nested if isinstance(nested, FormKey) else extract_identity(nested)
    return parse_raw_identity(value)


def parse_raw_identity(value: Any) -> Optional[FormKey]:
    """文字列・タプル・辞書といった生の形状から FormKey を組み立てる。"""
    if isinstance(value, str):
        return try_parse(value)
    if isinstance(value, tuple) and len(value) == 2:
        if not has_plugin_extension(value[0]):
            return None
        return FormKey.try_create(value[0], value[1])
    if isinstance(value, dict):
        plugin = value.get("plugin") or value.get("Plugin") or value.get("mod_key")
        local_id = value.get("form_id", value.get("FormID", value.get("local_id")))
        if plugin is None and isinstance(value.get("form_key"), str):
            return try_parse(value["form_key"])
        if plugin is None or local_id is None:
            return None
        return FormKey.try_create(plugin, local_id)
    return None
