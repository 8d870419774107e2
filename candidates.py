# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# candidates.py
#
# 弾薬変更候補と、1 回の処理パスで共有するコンテキスト。
# =============================================================================

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property
from typing import Any, Callable, Optional

from errors import OperationCancelled
from form_key import FormKey
from schema import AMMO, PROJECTILE, WEAPON, SchemaProfile, SchemaVersion, get_profile

ProgressSink = Callable[[str], None]


def _no_progress(message: str) -> None:
    pass


class CancellationToken:
    """呼び出し側から cancel() されるまで有効な協調キャンセル用トークン。"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("処理がキャンセルされました")


@dataclass
class Candidate:
    """
    弾薬変更の仮説 1 件。

    プロバイダが生成し、確定させるのは最初に確認できたコンファーマ 1 つだけ。
    確定後の変更は confirm() が拒否する。
    """
    kind: str
    form_key: FormKey
    label: str = ""
    base_weapon: Optional[FormKey] = None
    base_weapon_label: str = ""
    ammo: Optional[FormKey] = None
    ammo_label: str = ""
    source_plugin: str = ""
    notes: str = ""
    suggested_target: str = ""
    confirmed: bool = False
    confirm_reason: str = ""

    def confirm(self, reason: str, ammo: Optional[FormKey] = None, ammo_label: str | None = None,
                base_weapon: Optional[FormKey] = None, base_weapon_label: str | None = None) -> bool:
        if self.confirmed:
            return False
        if base_weapon is not None and self.base_weapon is None:
            self.base_weapon = base_weapon
            if base_weapon_label is not None:
                self.base_weapon_label = base_weapon_label
        if ammo is not None:
            self.ammo = ammo
            self.ammo_label = ammo_label or ""
        self.confirmed = True
        self.confirm_reason = reason
        return True


@dataclass
class ExtractionContext:
    """候補抽出フェーズで共有するパス単位の情報。"""
    store: Any
    resolver: Any = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    progress: ProgressSink = _no_progress
    timestamp: datetime = field(default_factory=datetime.now)
    excluded_plugins: frozenset = frozenset()
    schema: SchemaProfile = field(default_factory=lambda: get_profile(SchemaVersion.UNKNOWN))
    enumerable_limit: int = 16

    def __post_init__(self):
        self.excluded_plugins = frozenset(p.lower() for p in self.excluded_plugins)

    def is_excluded(self, plugin: str | None) -> bool:
        return bool(plugin) and plugin.lower() in self.excluded_plugins

    @cached_property
    def weapons(self) -> list:
        return self.store.winning_records(WEAPON)

    @cached_property
    def weapon_keys(self) -> frozenset:
        return frozenset(w.form_key for w in self.weapons)

    @cached_property
    def weapons_by_key(self) -> dict:
        return {w.form_key: w for w in self.weapons}

    @cached_property
    def ammo_index(self) -> dict:
        """弾薬 (と弾丸) レコードの FormKey -> Record。"""
        index = {}
        for category in (AMMO, PROJECTILE):
            for record in self.store.winning_records(category):
                index[record.form_key] = record
        return index

    def report(self, message: str) -> None:
        self.progress(message)


@dataclass
class ConfirmationContext:
    """確認フェーズで共有するパス単位の情報。"""
    resolver: Any
    detector: Any
    reverse_index: Any
    excluded_plugins: frozenset
    weapons: list
    ammo_index: dict
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    schema: SchemaProfile = field(default_factory=lambda: get_profile(SchemaVersion.UNKNOWN))
    enumerable_limit: int = 16
    nested_depth: int = 2

    def __post_init__(self):
        self.excluded_plugins = frozenset(p.lower() for p in self.excluded_plugins)

    @classmethod
    def from_extraction(cls, extraction: ExtractionContext, detector, reverse_index,
                        nested_depth: int = 2) -> "ConfirmationContext":
        return cls(
            resolver=extraction.resolver,
            detector=detector,
            reverse_index=reverse_index,
            excluded_plugins=extraction.excluded_plugins,
            weapons=extraction.weapons,
            ammo_index=extraction.ammo_index,
            cancellation=extraction.cancellation,
            schema=extraction.schema,
            enumerable_limit=extraction.enumerable_limit,
            nested_depth=nested_depth,
        )

    def is_excluded(self, plugin: str | None) -> bool:
        return bool(plugin) and plugin.lower() in self.excluded_plugins

    @cached_property
    def weapons_by_key(self) -> dict:
        return {w.form_key: w for w in self.weapons}

    def ammo_label(self, key: Optional[FormKey]) -> str:
        if key is None:
            return ""
        record = self.ammo_index.get(key)
        if record is None and self.resolver is not None:
            record = self.resolver.resolve_by_identity(key)
        return record.editor_id if record is not None else ""

    def weapon_label(self, key: Optional[FormKey]) -> str:
        record = self.weapons_by_key.get(key) if key is not None else None
        return record.editor_id if record is not None else ""
