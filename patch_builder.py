# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# patch_builder.py
#
# 確定した候補から武器の弾薬を差し替えるオーバーライドを組み立てる。
# 出力ファイルは ESL フラグ付き (軽量プラグイン) として扱う。
# オーバーライドが持つのは弾薬の参照だけで、武器のその他のフィールドは複製しない。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from candidates import Candidate, CancellationToken
from errors import MissingCollaboratorError, OperationCancelled
from form_key import FormKey
from records import Record
from schema import AMMO, WEAPON, SchemaProfile, SchemaVersion, ammo_field_name, get_profile

DEFAULT_PATCH_NAME = "MunitionAutoPatcher_Patch.esp"


@dataclass
class WeaponOverride:
    """武器 1 件分のオーバーライド。ammo_field に書く弾薬の参照だけを持つ。"""
    weapon: FormKey
    editor_id: str
    ammo: FormKey
    ammo_field: str
    source: str = ""


@dataclass
class PatchPlugin:
    name: str = DEFAULT_PATCH_NAME
    author: str = "MunitionAutoPatcher"
    light: bool = True
    masters: list[str] = field(default_factory=list)
    overrides: dict = field(default_factory=dict)

    def add_master(self, plugin: str) -> None:
        """マスターを追加する。大文字小文字を無視して重複を除き、追加順を保つ。"""
        if not plugin or plugin.lower() == self.name.lower():
            return
        if plugin.lower() not in (m.lower() for m in self.masters):
            self.masters.append(plugin)

    def set_weapon_ammo(self, weapon: Record, ammo: Record, ammo_field: str, source: str = "") -> WeaponOverride:
        """武器のオーバーライドを作成または更新する。同じ武器は後から来たものが勝つ。"""
        override = WeaponOverride(
            weapon=weapon.form_key,
            editor_id=weapon.editor_id,
            ammo=ammo.form_key,
            ammo_field=ammo_field,
            source=source,
        )
        if weapon.form_key in self.overrides:
            logging.info(f"[Patch] {weapon.label} のオーバーライドを更新します")
        self.overrides[weapon.form_key] = override
        self.add_master(weapon.plugin)
        self.add_master(ammo.plugin)
        return override


@dataclass
class PatchResult:
    plugin: PatchPlugin
    success_count: int = 0
    skipped_count: int = 0
    skipped: list = field(default_factory=list)
    output_paths: list[Path] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return bool(self.output_paths)


class PatchBuilder:
    """
    確定済み候補から PatchPlugin を組み立て、指定されたライターで書き出す。
    候補単位の失敗はスキップとして数えるだけで、例外にはしない。
    """

    def __init__(self, resolver, schema: SchemaProfile | None = None, writers: Iterable = (),
                 patch_name: str = DEFAULT_PATCH_NAME, author: str = "MunitionAutoPatcher",
                 cancellation: Optional[CancellationToken] = None):
        if resolver is None:
            raise MissingCollaboratorError("link resolver")
        self.resolver = resolver
        self.schema = schema or get_profile(SchemaVersion.UNKNOWN)
        self.writers = list(writers)
        self.patch_name = patch_name
        self.author = author
        self.cancellation = cancellation or CancellationToken()

    def build(self, candidates: Iterable[Candidate]) -> PatchResult:
        confirmed = [c for c in candidates if c.confirmed]
        result = PatchResult(plugin=PatchPlugin(name=self.patch_name, author=self.author, light=True))
        if not confirmed:
            logging.info("[Patch] 確定した候補がないため、パッチ生成をスキップします。")
            return result
        logging.info(f"[Patch] 確定候補 {len(confirmed)} 件からパッチを生成します")

        for candidate in confirmed:
            self.cancellation.raise_if_cancelled()
            reason = self._apply(candidate, result.plugin)
            if reason is None:
                result.success_count += 1
            else:
                result.skipped_count += 1
                result.skipped.append((candidate, reason))
                logging.warning(f"[Patch] スキップ: {candidate.form_key} ({reason})")

        logging.info(f"[Patch] 武器オーバーライド {result.success_count} 件 / スキップ {result.skipped_count} 件")
        if result.success_count == 0:
            logging.warning("[Patch] パッチできた武器がないため、ファイル出力をスキップします。")
            return result

        for writer in self.writers:
            self.cancellation.raise_if_cancelled()
            result.output_paths.append(writer.write(result.plugin))
        return result

    def _weapon_for(self, candidate: Candidate) -> Optional[Record]:
        own = self.resolver.resolve_by_identity(candidate.form_key)
        if own is not None and own.category == WEAPON:
            return own
        if candidate.base_weapon is None:
            return None
        weapon = self.resolver.resolve_by_identity(candidate.base_weapon)
        if weapon is None or weapon.category != WEAPON:
            return None
        return weapon

    def _apply(self, candidate: Candidate, plugin: PatchPlugin) -> Optional[str]:
        """オーバーライドを追加する。スキップした場合はその理由を返す。"""
        try:
            weapon = self._weapon_for(candidate)
            if weapon is None:
                return "WeaponUnresolved"
            if candidate.ammo is None:
                return "NoAmmo"
            ammo = self.resolver.resolve_by_identity(candidate.ammo)
            if ammo is None or ammo.category != AMMO:
                return "AmmoUnresolved"
            field_name = ammo_field_name(weapon, self.schema) or self.schema.ammo_field or "Ammo"
            plugin.set_weapon_ammo(weapon, ammo, field_name, source=str(candidate.form_key))
            logging.info(f"[Patch] 武器オーバーライド作成: {weapon.form_key} -> 弾薬 {ammo.form_key}")
            return None
        except OperationCancelled:
            raise
        except Exception as e:
            logging.warning(f"[Patch] {candidate.form_key} の処理に失敗: {e}")
            return f"Error:{type(e).__name__}"
