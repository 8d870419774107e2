# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# diagnostic_writer.py
#
# 候補一覧 CSV・参照ゼロ候補のレポート・処理段階ごとのマーカーファイルを
# artifacts ディレクトリに書き出す。
# 診断出力の失敗は処理全体を止めない (ログに残して続行する)。
# =============================================================================

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from candidates import Candidate

RESULT_COLUMNS = [
    "candidate_kind", "base_weapon", "base_weapon_label", "candidate", "candidate_label",
    "candidate_ammo", "candidate_ammo_label", "source_plugin", "notes", "suggested_target",
    "confirmed", "confirm_reason",
]
ZERO_REF_COLUMNS = ["candidate_kind", "source_plugin", "candidate", "candidate_label", "confirm_reason"]
PLUGIN_SUMMARY_COLUMNS = ["weapon", "editor_id", "reverse_ref_count", "reverse_source_plugins", "confirmed_candidates"]


def candidate_row(c: Candidate) -> dict:
    return {
        "candidate_kind": c.kind,
        "base_weapon": str(c.base_weapon) if c.base_weapon else "",
        "base_weapon_label": c.base_weapon_label,
        "candidate": str(c.form_key),
        "candidate_label": c.label,
        "candidate_ammo": str(c.ammo) if c.ammo else "",
        "candidate_ammo_label": c.ammo_label,
        "source_plugin": c.source_plugin,
        "notes": c.notes,
        "suggested_target": c.suggested_target,
        "confirmed": "true" if c.confirmed else "false",
        "confirm_reason": c.confirm_reason,
    }


class DiagnosticWriter:
    def __init__(self, artifacts_dir: Path, timestamp: Optional[datetime] = None, progress=None):
        self.artifacts_dir = Path(artifacts_dir)
        self.timestamp = timestamp or datetime.now()
        self.progress = progress

    @property
    def stamp(self) -> str:
        return self.timestamp.strftime("%Y%m%d_%H%M%S")

    def _report(self, message: str):
        if self.progress is not None:
            self.progress(message)

    def _write_csv(self, path: Path, columns: list[str], rows: Iterable[dict]) -> Path:
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=columns)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        return path

    # --- マーカー ---

    def write_marker(self, prefix: str, lines: list[str]) -> Optional[Path]:
        try:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)
            path = self.artifacts_dir / f"{prefix}{self.stamp}.txt"
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
            logging.info(f"[Diagnostics] マーカーを生成しました: {path.name}")
            return path
        except OSError as e:
            logging.error(f"[Diagnostics] マーカー {prefix} の書き出しに失敗: {e}")
            return None

    def write_start_marker(self) -> Optional[Path]:
        return self.write_marker("extract_start_", [f"Extraction started at {self.timestamp.isoformat()}"])

    def write_detector_selected(self, name: str) -> Optional[Path]:
        return self.write_marker("detector_selected_", [
            f"Detector selected at {datetime.now().isoformat()}",
            f"Detector={name}",
        ])

    def write_reverse_map_marker(self, key_count: int, entry_count: int) -> Optional[Path]:
        return self.write_marker("reverse_map_built_", [
            f"Reverse reference index built at {datetime.now().isoformat()}",
            f"Keys={key_count}",
            f"Entries={entry_count}",
        ])

    def write_detection_pass_marker(self) -> Optional[Path]:
        return self.write_marker("detection_pass_complete_", [f"Detection pass finished at {datetime.now().isoformat()}"])

    def write_completion_marker(self) -> Optional[Path]:
        return self.write_marker("extract_complete_", [f"Extraction completed at {datetime.now().isoformat()}"])

    # --- CSV ---

    def write_results_csv(self, candidates: list[Candidate]) -> Optional[Path]:
        """全候補を確定状態に関係なく 1 行ずつ書き出す。"""
        try:
            path = self._write_csv(
                self.artifacts_dir / f"weapon_ammo_candidates_{self.stamp}.csv",
                RESULT_COLUMNS,
                (candidate_row(c) for c in candidates),
            )
        except OSError as e:
            logging.error(f"[Diagnostics] 候補 CSV の書き出しに失敗: {e}")
            self._report(f"警告: CSV の出力に失敗しました: {e}")
            return None
        logging.info(f"[Diagnostics] 候補 CSV を生成しました: {path} ({len(candidates)} 件)")
        self._report(f"候補 CSV を生成しました: {path}")
        return path

    def write_zero_reference_report(self, candidates: list[Candidate]) -> Optional[Path]:
        """基本武器を特定できなかった未確定候補の一覧。該当がなければ何も書かない。"""
        rows = [c for c in candidates if not c.confirmed and c.base_weapon is None]
        if not rows:
            return None
        try:
            path = self._write_csv(
                self.artifacts_dir / f"zero_ref_summary_{self.stamp}.csv",
                ZERO_REF_COLUMNS,
                ({k: candidate_row(c)[k] for k in ZERO_REF_COLUMNS} for c in rows),
            )
        except OSError as e:
            logging.error(f"[Diagnostics] zero-ref レポートの書き出しに失敗: {e}")
            return None
        logging.info(f"[Diagnostics] zero-ref レポートを生成しました: {path} ({len(rows)} 件)")
        return path

    def write_plugin_report(self, plugin_name: str, candidates: list[Candidate], weapons: list,
                            reverse_index) -> list[Path]:
        """
        特定プラグインの調査用レポート。
        そのプラグイン由来の候補 CSV と、そのプラグインの武器ごとの逆参照サマリを書く。
        """
        written = []
        if not plugin_name:
            return written
        target = plugin_name.lower()
        stem = Path(plugin_name).stem
        try:
            filtered = [c for c in candidates if c.source_plugin.lower() == target]
            if filtered:
                written.append(self._write_csv(
                    self.artifacts_dir / f"weapon_ammo_candidates_{stem}_{self.stamp}.csv",
                    RESULT_COLUMNS,
                    (candidate_row(c) for c in filtered),
                ))

            summary = []
            for weapon in weapons:
                if weapon.plugin.lower() != target:
                    continue
                entries = reverse_index.references_to(weapon.form_key)
                sources = sorted({e.record.plugin for e in entries}, key=str.lower)
                confirmed = sum(1 for c in candidates if c.confirmed and c.base_weapon == weapon.form_key)
                summary.append({
                    "weapon": str(weapon.form_key),
                    "editor_id": weapon.editor_id,
                    "reverse_ref_count": len(entries),
                    "reverse_source_plugins": ";".join(sources),
                    "confirmed_candidates": confirmed,
                })
            if summary:
                written.append(self._write_csv(
                    self.artifacts_dir / f"plugin_diagnostic_{stem}_{self.stamp}.csv",
                    PLUGIN_SUMMARY_COLUMNS,
                    summary,
                ))
        except OSError as e:
            logging.warning(f"[Diagnostics] {plugin_name} 向けレポートの書き出しに失敗: {e}")
        for path in written:
            logging.info(f"[Diagnostics] {plugin_name} 向けレポートを生成しました: {path.name}")
        return written
