# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# providers.py
#
# 未確認の弾薬変更候補を生成するプロバイダ。
#   - RecipeCandidateProvider           : COBJ (レシピ) の生成物から候補を作る
#   - ReverseReferenceCandidateProvider : 武器を参照しているレコードから候補を作る
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Optional

from candidates import Candidate, ExtractionContext
from errors import FieldAccessError, MissingCollaboratorError, OperationCancelled
from form_key import FormKey, extract_identity
from schema import COBJ, ammo_link, created_object, is_modification_like


class CandidateProvider:
    """プロバイダの共通インターフェース。"""
    name = "provider"

    def __init__(self):
        self.stats = Counter()

    def collect(self, context: ExtractionContext) -> list[Candidate]:
        raise NotImplementedError

    def _require(self, context: ExtractionContext, resolver: bool = False) -> None:
        if context.store is None:
            raise MissingCollaboratorError("record store")
        if resolver and context.resolver is None:
            raise MissingCollaboratorError("link resolver")


class RecipeCandidateProvider(CandidateProvider):
    """
    レシピが武器を生成する場合、その武器と現在の弾薬を候補として登録する。
    OMOD を生成するレシピも、アタッチポイントによる確認のために候補に含める。
    """
    name = "recipe"

    def collect(self, context: ExtractionContext) -> list[Candidate]:
        self._require(context, resolver=True)
        results = []
        for recipe in context.store.winning_records(COBJ):
            context.cancellation.raise_if_cancelled()
            self.stats["inspected"] += 1
            if context.is_excluded(recipe.plugin):
                self.stats["excluded"] += 1
                continue
            try:
                candidate = self._candidate_for(recipe, context)
            except FieldAccessError as e:
                self.stats["field_errors"] += 1
                logging.debug(f"[Recipe] {e}")
                continue
            if candidate is not None:
                results.append(candidate)
        logging.info(f"[Recipe] 候補 {len(results)} 件 (統計: {dict(self.stats)})")
        context.report(f"レシピ候補 {len(results)} 件")
        return results

    def _candidate_for(self, recipe, context: ExtractionContext) -> Optional[Candidate]:
        link = created_object(recipe, context.schema)
        if link is None or getattr(link, "is_null", False) or extract_identity(link) is None:
            self.stats["no_created_object"] += 1
            return None
        created = context.resolver.resolve(link)
        if created is None:
            self.stats["unresolved"] += 1
            return None
        notes = f"Recipe source: {recipe.form_key}"

        if created.form_key in context.weapon_keys:
            weapon_ammo = extract_identity(ammo_link(created, context.schema))
            ammo_record = context.ammo_index.get(weapon_ammo) if weapon_ammo is not None else None
            self.stats["weapon"] += 1
            return Candidate(
                kind="recipe",
                form_key=recipe.form_key,
                label=recipe.editor_id,
                base_weapon=created.form_key,
                base_weapon_label=created.editor_id,
                ammo=weapon_ammo,
                ammo_label=ammo_record.editor_id if ammo_record is not None else "",
                source_plugin=recipe.plugin,
                notes=notes,
                suggested_target="CreatedWeapon",
            )

        if is_modification_like(created.category):
            self.stats["modification"] += 1
            return Candidate(
                kind="recipe",
                form_key=recipe.form_key,
                label=recipe.editor_id,
                source_plugin=recipe.plugin,
                notes=f"{notes};CreatedObject={created.form_key}",
                suggested_target="CreatedObject",
            )
        self.stats["other_created"] += 1
        return None


class ReverseReferenceCandidateProvider(CandidateProvider):
    """
    全カテゴリの全フィールドを走査し、既知の武器を参照しているフィールドごとに候補を作る。

    同じレコードの別フィールドで最初に見つかった (武器以外の) FormKey を
    「検出された弾薬参照」として記録する。無関係な参照を拾うことがある大雑把な推定。
    """
    name = "reverse-reference"

    def __init__(self, enumerable_limit: int = 16):
        super().__init__()
        self.enumerable_limit = enumerable_limit

    def collect(self, context: ExtractionContext) -> list[Candidate]:
        self._require(context)
        results = []
        weapon_keys = context.weapon_keys
        for category, records in context.store.all_categories():
            for record in records:
                context.cancellation.raise_if_cancelled()
                self.stats["records"] += 1
                if context.is_excluded(record.plugin):
                    self.stats["excluded"] += 1
                    continue
                try:
                    results.extend(self._scan_record(category, record, weapon_keys, context))
                except OperationCancelled:
                    raise
                except Exception as e:
                    self.stats["record_errors"] += 1
                    logging.debug(f"[ReverseRef] {record!r} の走査に失敗: {e}")
        logging.info(f"[ReverseRef] 候補 {len(results)} 件 (統計: {dict(self.stats)})")
        context.report(f"逆参照候補 {len(results)} 件")
        return results

    def _scan_record(self, category: str, record, weapon_keys, context: ExtractionContext) -> list[Candidate]:
        found = []
        names = record.field_names()
        for name in names:
            context.cancellation.raise_if_cancelled()
            try:
                value = record.get(name)
            except FieldAccessError as e:
                self.stats["field_errors"] += 1
                logging.debug(f"[ReverseRef] {e}")
                continue
            hit = self._find_weapon(value, weapon_keys)
            if hit is None:
                continue
            weapon_key, enumerable = hit
            if weapon_key == record.form_key:
                continue
            ammo_key = self._detect_ammo(record, names, name, weapon_key)
            ammo_record = context.ammo_index.get(ammo_key) if ammo_key is not None else None
            weapon = context.weapons_by_key.get(weapon_key)
            suffix = " (enumerable)" if enumerable else ""
            found.append(Candidate(
                kind=category,
                form_key=record.form_key,
                label=record.editor_id,
                base_weapon=weapon_key,
                base_weapon_label=weapon.editor_id if weapon is not None else "",
                ammo=ammo_key,
                ammo_label=ammo_record.editor_id if ammo_record is not None else "",
                source_plugin=record.plugin,
                notes=f"Reference found in {category}.{name}{suffix} -> {weapon_key};DetectedAmmo={ammo_key or ''}",
                suggested_target="Reference",
            ))
            self.stats["hits"] += 1
        return found

    def _bounded(self, value) -> tuple[list, bool]:
        if isinstance(value, (list, tuple)) and not (isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str)):
            return list(value)[:self.enumerable_limit], True
        return [value], False

    def _find_weapon(self, value: Any, weapon_keys) -> Optional[tuple[FormKey, bool]]:
        items, enumerable = self._bounded(value)
        for item in items:
            key = extract_identity(item)
            if key is not None and key in weapon_keys:
                # 列挙値は最初の 1 件のみ
                return key, enumerable
        return None

    def _detect_ammo(self, record, names, weapon_field: str, weapon_key: FormKey) -> Optional[FormKey]:
        for other in names:
            if other == weapon_field:
                continue
            try:
                value = record.get(other)
            except FieldAccessError:
                continue
            items, _ = self._bounded(value)
            for item in items:
                key = extract_identity(item)
                if key is not None and key != weapon_key and key != record.form_key:
                    return key
        return None
