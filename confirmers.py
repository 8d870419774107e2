# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# confirmers.py
#
# 候補に証拠を付けて確定させるコンファーマ。
# run_confirmers() は固定順で実行し、確定済みの候補は後続のコンファーマが触らない。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from candidates import Candidate, ConfirmationContext
from errors import FieldAccessError, MissingCollaboratorError, OperationCancelled
from form_key import FormKey, extract_identity
from schema import (
    ammo_link, attach_parent_slots, attach_point, created_object,
    is_ammo_like, is_modification_like,
)


class CandidateConfirmer:
    name = "confirmer"

    def confirm(self, candidates: list[Candidate], context: ConfirmationContext) -> None:
        raise NotImplementedError


@dataclass
class AttachPointStats:
    inspected: int = 0
    resolved: int = 0
    had_attach_point: int = 0
    matched_weapons: int = 0
    found_ammo: int = 0
    confirmed: int = 0
    root_unresolved: int = 0
    created_object_missing: int = 0
    created_object_unresolved: int = 0
    created_object_not_modification: int = 0

    def log_summary(self):
        summary = ", ".join(f"{k}={v}" for k, v in asdict(self).items())
        logging.info(f"[AttachPoint] 集計: {summary}")


class AttachPointConfirmer(CandidateConfirmer):
    """
    OMOD のアタッチポイントと、武器の Attach Parent Slots の一致から適用先の武器を求め、
    OMOD 内に弾薬への参照があれば確定させる。

    逆引きインデックスは使わない (OMOD は武器を直接参照しないため)。
    """
    name = "AttachPoint"

    def __init__(self):
        self.stats = AttachPointStats()

    def confirm(self, candidates: list[Candidate], context: ConfirmationContext) -> None:
        self.stats = AttachPointStats()
        slot_map = self.build_slot_map(context)
        logging.info(f"[AttachPoint] アタッチポイント {len(slot_map)} 種類を武器から収集しました")

        for candidate in candidates:
            context.cancellation.raise_if_cancelled()
            self.stats.inspected += 1
            if candidate.confirmed or not is_modification_like(candidate.kind):
                continue
            try:
                self._confirm_one(candidate, slot_map, context)
            except OperationCancelled:
                raise
            except Exception as e:
                logging.debug(f"[AttachPoint] {candidate.form_key} の確認中にエラー: {e}")
        self.stats.log_summary()

    @staticmethod
    def build_slot_map(context: ConfirmationContext) -> dict[FormKey, list[FormKey]]:
        """アタッチポイント FormKey -> そのスロットを持つ武器 FormKey (武器リスト順)。"""
        slot_map: dict[FormKey, list[FormKey]] = {}
        for weapon in context.weapons:
            try:
                slots = attach_parent_slots(weapon, context.schema)
            except FieldAccessError as e:
                logging.debug(f"[AttachPoint] {e}")
                continue
            for slot in slots:
                key = extract_identity(slot)
                if key is None:
                    continue
                bucket = slot_map.setdefault(key, [])
                if weapon.form_key not in bucket:
                    bucket.append(weapon.form_key)
        return slot_map

    def _confirm_one(self, candidate: Candidate, slot_map, context: ConfirmationContext) -> None:
        modification = self._resolve_modification(candidate, context)
        if modification is None:
            return
        self.stats.resolved += 1

        point_key = extract_identity(attach_point(modification, context.schema))
        if point_key is None:
            return
        self.stats.had_attach_point += 1

        weapons = slot_map.get(point_key)
        if not weapons:
            return
        self.stats.matched_weapons += len(weapons)

        ammo_key = self._find_ammo(modification, context, context.nested_depth)
        if ammo_key is None:
            return
        self.stats.found_ammo += 1

        confirmed = candidate.confirm(
            f"AttachPointMatch+Ammo ({point_key})",
            ammo=ammo_key,
            ammo_label=context.ammo_label(ammo_key),
            base_weapon=weapons[0],
            base_weapon_label=context.weapon_label(weapons[0]),
        )
        if confirmed:
            self.stats.confirmed += 1

    def _resolve_modification(self, candidate: Candidate, context: ConfirmationContext):
        root = context.resolver.resolve_by_identity(candidate.form_key)
        if root is None:
            self.stats.root_unresolved += 1
            return None
        if extract_identity(attach_point(root, context.schema)) is not None:
            return root

        link = created_object(root, context.schema)
        if link is None or extract_identity(link) is None:
            self.stats.created_object_missing += 1
            return None
        created = context.resolver.resolve(link)
        if created is None:
            self.stats.created_object_unresolved += 1
            return None
        if extract_identity(attach_point(created, context.schema)) is not None:
            return created
        self.stats.created_object_not_modification += 1
        return None

    def _find_ammo(self, record, context: ConfirmationContext, depth: int) -> Optional[FormKey]:
        for name in record.field_names():
            context.cancellation.raise_if_cancelled()
            try:
                value = record.get(name)
            except FieldAccessError as e:
                logging.debug(f"[AttachPoint] {e}")
                continue
            key = self._ammo_in_value(value, context, depth)
            if key is not None:
                return key
        return None

    def _ammo_in_value(self, value, context: ConfirmationContext, depth: int) -> Optional[FormKey]:
        key = extract_identity(value)
        if key is not None:
            return key if key in context.ammo_index else None
        if depth <= 0:
            return None
        if isinstance(value, dict):
            items = list(value.values())
        elif isinstance(value, (list, tuple)):
            items = list(value)[:context.enumerable_limit]
        else:
            return None
        for item in items:
            found = self._ammo_in_value(item, context, depth - 1)
            if found is not None:
                return found
        return None


class ReverseMapConfirmer(CandidateConfirmer):
    """
    逆引きインデックスから基本武器を参照しているレコードを取り出し、
    検出器 → フィールド走査の順に弾薬変更の証拠を探す。最初に見つかった証拠で確定する。
    """
    name = "ReverseMap"

    def confirm(self, candidates: list[Candidate], context: ConfirmationContext) -> None:
        confirmed = 0
        for candidate in candidates:
            context.cancellation.raise_if_cancelled()
            if candidate.confirmed or candidate.base_weapon is None:
                continue
            try:
                if self._confirm_one(candidate, context):
                    confirmed += 1
            except OperationCancelled:
                raise
            except Exception as e:
                logging.debug(f"[ReverseMap] {candidate.form_key} の確認中にエラー: {e}")
            if not candidate.confirmed and not candidate.confirm_reason:
                refs = len(context.reverse_index.references_to(candidate.base_weapon))
                candidate.confirm_reason = f"ReverseMap_NoEvidence;Refs={refs};Detector={_detector_name(context)}"
        logging.info(f"[ReverseMap] 逆引きによる確認完了: {confirmed} 件を確定")

    def _confirm_one(self, candidate: Candidate, context: ConfirmationContext) -> bool:
        entries = context.reverse_index.references_to(candidate.base_weapon)
        usable = 0
        for entry in entries:
            context.cancellation.raise_if_cancelled()
            source = entry.record
            if context.is_excluded(source.plugin):
                continue
            usable += 1
            try:
                if self._try_detector(candidate, source, context):
                    return True
                if self._try_field_scan(candidate, source, context):
                    return True
            except OperationCancelled:
                raise
            except Exception as e:
                logging.debug(f"[ReverseMap] 参照元 {source!r} の処理に失敗: {e}")
        if usable == 0:
            candidate.confirm_reason = (
                f"ReverseMap_NoUsableReference;Refs={len(entries)};Detector={_detector_name(context)}"
            )
        return False

    def _original_ammo(self, candidate: Candidate, context: ConfirmationContext):
        weapon = context.weapons_by_key.get(candidate.base_weapon)
        if weapon is None:
            return None
        try:
            return ammo_link(weapon, context.schema)
        except FieldAccessError as e:
            logging.debug(f"[ReverseMap] 元の弾薬を取得できません: {e}")
            return None

    def _try_detector(self, candidate: Candidate, source, context: ConfirmationContext) -> bool:
        if context.detector is None:
            return False
        new_ammo = context.detector.detects_change(
            source, self._original_ammo(candidate, context),
            exclude=(candidate.base_weapon, candidate.form_key),
        )
        key = extract_identity(new_ammo)
        if key is None:
            return False
        # 検出器が返した参照は弾薬として解決できたものだけ採用する
        if key not in context.ammo_index:
            resolved = context.resolver.resolve(new_ammo)
            if resolved is None or not is_ammo_like(resolved.category):
                logging.debug(f"[ReverseMap] 検出器の結果 {key} は弾薬ではないため不採用 ({candidate.form_key})")
                return False
        return candidate.confirm(
            f"Detector {context.detector.name} reported change",
            ammo=key,
            ammo_label=context.ammo_label(key),
        )

    def _try_field_scan(self, candidate: Candidate, source, context: ConfirmationContext) -> bool:
        for name in source.field_names():
            context.cancellation.raise_if_cancelled()
            try:
                value = source.get(name)
            except FieldAccessError as e:
                logging.debug(f"[ReverseMap] {e}")
                continue
            key = extract_identity(value)
            if key is None:
                continue
            resolved = context.resolver.resolve(value)
            if resolved is not None and is_ammo_like(resolved.category):
                return candidate.confirm(
                    f"Resolved {name} -> {resolved.category} on {source.category}",
                    ammo=key,
                    ammo_label=resolved.editor_id,
                )
            mapped = context.ammo_index.get(key)
            if mapped is not None:
                return candidate.confirm(
                    f"Resolved {name} -> {mapped.category} on {source.category}",
                    ammo=key,
                    ammo_label=mapped.editor_id,
                )
        return False


DEFAULT_CONFIRMERS = (AttachPointConfirmer, ReverseMapConfirmer)


def run_confirmers(candidates: list[Candidate], context: ConfirmationContext,
                   confirmers: Iterable[CandidateConfirmer] | None = None) -> None:
    """コンファーマを固定順に実行する。"""
    if context.resolver is None:
        raise MissingCollaboratorError("link resolver")
    if context.reverse_index is None:
        raise MissingCollaboratorError("reverse reference index")
    if confirmers is None:
        confirmers = [cls() for cls in DEFAULT_CONFIRMERS]
    for confirmer in confirmers:
        context.cancellation.raise_if_cancelled()
        before = sum(1 for c in candidates if c.confirmed)
        confirmer.confirm(candidates, context)
        after = sum(1 for c in candidates if c.confirmed)
        logging.info(f"[Confirm] {confirmer.name}: 新たに {after - before} 件確定 (累計 {after} 件)")


def _detector_name(context: ConfirmationContext) -> str:
    return getattr(context.detector, "name", None) or "None"


def finalize_confirm_reasons(candidates: list[Candidate], reverse_index, detector_name: str) -> None:
    """確認理由が空のまま残った未確定候補に、診断用の理由を埋める。"""
    for candidate in candidates:
        if candidate.confirmed or candidate.confirm_reason:
            continue
        refs = len(reverse_index.references_to(candidate.base_weapon)) if reverse_index is not None else 0
        suffix = f";Refs={refs};Detector={detector_name}"
        if candidate.base_weapon is None:
            reason = "NoBaseWeapon"
        elif candidate.kind.lower() == "recipe":
            reason = "Recipe_NoAmmoLink" if candidate.ammo is None else "Recipe_AmmoPresent_NotConfirmed"
        elif candidate.ammo is not None and not candidate.ammo_label:
            reason = "CandidateAmmo_UnresolvedName"
        elif candidate.ammo is not None:
            reason = "CandidateAmmo_Present_NotConfirmed"
        else:
            reason = "NoAmmoDetected"
        candidate.confirm_reason = reason + suffix
