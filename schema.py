# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# schema.py
#
# スキーマバージョンごとのフィールド名テーブルと、レコードから
# 弾薬・アタッチポイント等を取り出すためのアクセサ群。
# フィールド名が分からない場合は名前パターンでの走査にフォールバックする。
# =============================================================================

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Iterable, Optional

# --- カテゴリ (レコードシグネチャ) ---
WEAPON = "WEAP"
AMMO = "AMMO"
OMOD = "OMOD"
COBJ = "COBJ"
PROJECTILE = "PROJ"
KEYWORD = "KYWD"

CATEGORY_ALIASES = {
    "weapon": WEAPON,
    "weapons": WEAPON,
    "ammunition": AMMO,
    "ammunitions": AMMO,
    "ammo": AMMO,
    "objectmodification": OMOD,
    "objectmodifications": OMOD,
    "weaponmodification": OMOD,
    "constructibleobject": COBJ,
    "constructibleobjects": COBJ,
    "projectile": PROJECTILE,
    "projectiles": PROJECTILE,
    "keyword": KEYWORD,
    "keywords": KEYWORD,
}

MODIFICATION_MARKERS = (
    "omod", "objectmodification", "objectmod", "cobj",
    "constructibleobject", "createdweapon", "recipe",
)
AMMO_MARKERS = ("ammo", "ammunition", "projectile", "proj", "bullet")


def normalize_category(name: str | None) -> str:
    """'Weapon' や 'weap' のような表記ゆれをレコードシグネチャに揃える。"""
    text = (name or "").strip()
    if not text:
        return ""
    compact = re.sub(r"[^a-z]", "", text.lower())
    if compact in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[compact]
    return text.upper() if len(text) == 4 else text


def is_modification_like(kind: str | None) -> bool:
    lowered = (kind or "").lower()
    return any(marker in lowered for marker in MODIFICATION_MARKERS)


def is_ammo_like(category: str | None) -> bool:
    lowered = (category or "").lower()
    return any(marker in lowered for marker in AMMO_MARKERS)


class SchemaVersion(enum.Enum):
    """レコードデータの出自。検出器の選択やフィールド名の解決に使う。"""
    MUTAGEN_V51 = "mutagen_v51"
    XEDIT_EXPORT = "xedit"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, text: str | None) -> "SchemaVersion":
        lowered = (text or "").strip().lower()
        for member in cls:
            if member.value == lowered or member.name.lower() == lowered:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class SchemaProfile:
    """バージョン別のフィールド名テーブル。None は「不明なので名前パターンで探す」を意味する。"""
    version: SchemaVersion
    ammo_field: Optional[str] = None
    attach_parent_slots_field: Optional[str] = None
    attach_point_field: Optional[str] = None
    created_object_field: Optional[str] = None
    properties_field: Optional[str] = None
    property_name_key: str = "property"
    property_value_key: str = "value"


PROFILES = {
    SchemaVersion.MUTAGEN_V51: SchemaProfile(
        version=SchemaVersion.MUTAGEN_V51,
        ammo_field="Ammo",
        attach_parent_slots_field="AttachParentSlots",
        attach_point_field="AttachPoint",
        created_object_field="CreatedObject",
        properties_field="Properties",
        property_name_key="Property",
        property_value_key="Value",
    ),
    SchemaVersion.XEDIT_EXPORT: SchemaProfile(
        version=SchemaVersion.XEDIT_EXPORT,
        ammo_field="DNAM - Ammo",
        attach_parent_slots_field="APPR - Attach Parent Slots",
        attach_point_field="DATA - Attach Point",
        created_object_field="CNAM - Created Object",
        properties_field="DATA - Properties",
        property_name_key="Property",
        property_value_key="Value 1",
    ),
    SchemaVersion.UNKNOWN: SchemaProfile(version=SchemaVersion.UNKNOWN),
}


def get_profile(version: SchemaVersion) -> SchemaProfile:
    return PROFILES.get(version, PROFILES[SchemaVersion.UNKNOWN])


# --- 名前パターン (スキーマ不明時) ---

def _compact(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


_PATTERNS = {
    "ammo": lambda n: "ammo" in n or "ammunition" in n,
    "attach_parent_slots": lambda n: "attachparentslot" in n or n.endswith("appr"),
    "attach_point": lambda n: "attachpoint" in n and "parent" not in n,
    "created_object": lambda n: "createdobject" in n or n.startswith("cnam"),
    "properties": lambda n: n.endswith("properties") or n == "properties",
}


def _find_field(record, exact: Optional[str], pattern_key: str) -> Optional[str]:
    names = list(record.field_names())
    if exact is not None and exact in names:
        return exact
    matcher = _PATTERNS[pattern_key]
    for name in names:
        if matcher(_compact(name)):
            return name
    return None


def _read(record, exact, pattern_key):
    name = _find_field(record, exact, pattern_key)
    if name is None:
        return None
    return record.get(name)


def ammo_link(record, profile: SchemaProfile):
    """武器レコードの弾薬リンク。見つからなければ None。"""
    return _read(record, profile.ammo_field, "ammo")


def ammo_field_name(record, profile: SchemaProfile) -> Optional[str]:
    return _find_field(record, profile.ammo_field, "ammo")


def attach_parent_slots(record, profile: SchemaProfile) -> list:
    value = _read(record, profile.attach_parent_slots_field, "attach_parent_slots")
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def attach_point(record, profile: SchemaProfile):
    return _read(record, profile.attach_point_field, "attach_point")


def created_object(record, profile: SchemaProfile):
    return _read(record, profile.created_object_field, "created_object")


def mod_properties(record, profile: SchemaProfile) -> list:
    """
    OMOD のプロパティ一覧を (プロパティ名, 値) のタプルのリストで返す。
    プロパティ名が読めない要素は名前を空文字にする。
    """
    value = _read(record, profile.properties_field, "properties")
    if not isinstance(value, (list, tuple)):
        return []
    result = []
    for entry in value:
        if isinstance(entry, dict):
            name = entry.get(profile.property_name_key, entry.get("property", entry.get("Property", "")))
            inner = entry.get(profile.property_value_key, entry.get("value", entry.get("Value")))
            result.append((str(name or ""), inner))
        else:
            result.append(("", entry))
    return result


# --- 類似度ランキング ---

AMMO_KEYWORDS = ("ammo", "ammunition", "projectile")


def name_similarity(name: str, keywords: Iterable[str] = AMMO_KEYWORDS) -> float:
    """フィールド名とキーワード群との類似度 (0.0〜2.0)。部分一致は 1.0 以上になる。"""
    compact = _compact(name)
    if not compact:
        return 0.0
    best = 0.0
    for keyword in keywords:
        if keyword in compact:
            best = max(best, 1.0 + len(keyword) / max(len(compact), 1))
        else:
            best = max(best, SequenceMatcher(None, compact, keyword).ratio())
    return best


def rank_fields(names: Iterable[str], keywords: Iterable[str] = AMMO_KEYWORDS) -> list[str]:
    """類似度の高い順に並べたフィールド名リスト。同点は元の順序を保つ。"""
    keywords = tuple(keywords)
    indexed = list(enumerate(names))
    indexed.sort(key=lambda item: (-name_similarity(item[1], keywords), item[0]))
    return [name for _, name in indexed]
