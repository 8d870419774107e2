# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# detectors.py
#
# OMOD などのレコードが武器の弾薬参照を変更するかを判定する検出器。
# どの検出器を使うかはパス開始時に create_detector() で 1 回だけ決める。
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Optional

from errors import FieldAccessError, OperationCancelled
from form_key import extract_identity
from schema import AMMO, SchemaVersion, get_profile, is_modification_like, mod_properties, rank_fields


class AmmoChangeDetector:
    """検出器の共通インターフェース。"""
    name = "AmmoChangeDetector"

    def detects_change(self, candidate_record, original_ammo_ref, exclude=()) -> Optional[Any]:
        """
        弾薬の変更を検出したら新しい弾薬参照を、そうでなければ None を返す。
        exclude に含まれる FormKey (参照元の武器など) は候補にしない。
        """
        raise NotImplementedError


class FallbackAmmoChangeDetector(AmmoChangeDetector):
    """
    フィールド名の類似度順に全フィールドを走査するベストエフォート検出器。

    元の弾薬と異なる FormKey を持つ最初のフィールドを「変更」とみなすため、
    弾薬以外の参照を拾うことがある。
    """
    name = "FallbackScanDetector"

    def __init__(self, enumerable_limit: int = 16):
        self.enumerable_limit = enumerable_limit

    def detects_change(self, candidate_record, original_ammo_ref, exclude=()):
        if candidate_record is None:
            return None
        original = extract_identity(original_ammo_ref)
        own_key = getattr(candidate_record, "form_key", None)
        excluded = {key for key in exclude if key is not None}
        for name in rank_fields(candidate_record.field_names()):
            try:
                value = candidate_record.get(name)
            except FieldAccessError as e:
                logging.debug(f"[Detector] {e}")
                continue
            for item in self._values(value):
                key = extract_identity(item)
                if key is None or key == own_key or key in excluded:
                    continue
                if original is not None and key == original:
                    continue
                return item
        return None

    def _values(self, value):
        if isinstance(value, (list, tuple)) and not (isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str)):
            items = []
            for item in list(value)[:self.enumerable_limit]:
                if isinstance(item, dict):
                    items.extend(item.values())
                else:
                    items.append(item)
            return items
        if isinstance(value, dict):
            return list(value.values())
        return [value]


class TypedAmmoChangeDetector(AmmoChangeDetector):
    """
    スキーマが分かっている場合の検出器。武器 OMOD のプロパティ一覧から
    'Ammo' プロパティを探し、弾薬レコードに解決できたものだけを採用する。
    OMOD 以外のレコードは対象外として None を返す。
    """
    name = "TypedPropertyDetector"

    def __init__(self, resolver, schema_version: SchemaVersion, enumerable_limit: int = 16):
        self.resolver = resolver
        self.profile = get_profile(schema_version)
        self.fallback = FallbackAmmoChangeDetector(enumerable_limit)

    def detects_change(self, candidate_record, original_ammo_ref, exclude=()):
        if candidate_record is None:
            return None
        if not is_modification_like(candidate_record.category):
            logging.debug(f"[Detector] OMOD 以外のレコードは対象外: {candidate_record!r}")
            return None
        try:
            return self._detect_typed(candidate_record, original_ammo_ref)
        except (OperationCancelled, FieldAccessError):
            raise
        except Exception as e:
            logging.debug(f"[Detector] 型付き検出に失敗したためフォールバック: {e}")
        return self.fallback.detects_change(candidate_record, original_ammo_ref, exclude)

    def _detect_typed(self, record, original_ammo_ref):
        original = extract_identity(original_ammo_ref)
        for prop_name, value in mod_properties(record, self.profile):
            if prop_name.lower() != "ammo":
                continue
            key = extract_identity(value)
            if key is None:
                continue
            ammo = self.resolver.resolve_by_identity(key, AMMO) if self.resolver is not None else None
            if ammo is None:
                logging.debug(f"[Detector] 弾薬 {key} を解決できません ({record.label})")
                continue
            if original is not None and ammo.form_key == original:
                continue
            return ammo
        return None


def create_detector(schema_version: SchemaVersion, resolver=None, enumerable_limit: int = 16) -> AmmoChangeDetector:
    """スキーマバージョンに応じた検出器を返す。不明なバージョンではフォールバック検出器。"""
    if schema_version in (SchemaVersion.MUTAGEN_V51, SchemaVersion.XEDIT_EXPORT) and resolver is not None:
        detector = TypedAmmoChangeDetector(resolver, schema_version, enumerable_limit)
    else:
        detector = FallbackAmmoChangeDetector(enumerable_limit)
    logging.info(f"[Detector] 検出器を選択: {detector.name} (schema={schema_version.value})")
    return detector
