# -*- coding: utf-8 -*-
# robco_ini_generate.py: Robco Patcher INI 生成モジュール
#
# パッチの武器オーバーライドを Robco Patcher の weapon INI として書き出し、
# 配布用の ZIP を作成する (出力モード ini / both)。

from __future__ import annotations
import logging
import time
import shutil
from pathlib import Path
from dataclasses import dataclass, field

from patch_builder import PatchPlugin

WEAPON_INI_NAME = "Munitions_Weapon_SetAmmo.ini"

# --- データ構造定義 ---

@dataclass
class ProcessedData:
    """処理済みINIコンテンツを保持する。"""
    weapon_set_ammo_lines: list[str] = field(default_factory=list)

# --- データ処理 ---

def _process_overrides(plugin: PatchPlugin) -> ProcessedData:
    """武器オーバーライドを INI 行に変換する。"""
    processed = ProcessedData()
    seen_lines = set()
    for override in sorted(plugin.overrides.values(), key=lambda o: (o.weapon.plugin_key, o.weapon.local_id)):
        comment = f"; [{override.weapon.plugin}] {override.editor_id} -> {override.ammo}"
        line = (
            f"filterByWeapons={override.weapon.plugin}|{override.weapon.hex_id}"
            f":setNewAmmo={override.ammo.plugin}|{override.ammo.hex_id}"
        )
        if line in seen_lines:
            continue
        seen_lines.add(line)
        processed.weapon_set_ammo_lines.append(comment)
        processed.weapon_set_ammo_lines.append(line)
    return processed

# --- ファイル書き出し ---

def _generate_ini_files(processed: ProcessedData, robco_base_dir: Path) -> Path:
    """処理済みデータから INI ファイルを生成・書き出しする。"""
    timestamp = time.strftime('%Y-%m-%d %H:%M:%S')
    weapon_dir = robco_base_dir / "weapon"
    weapon_dir.mkdir(parents=True, exist_ok=True)

    header = [f"; Munitions Auto-Patcher: Set Weapon Ammo\n; GeneratedAt={timestamp}"]
    path = weapon_dir / WEAPON_INI_NAME
    path.write_text("\n".join(header + processed.weapon_set_ammo_lines) + "\n", encoding="utf-8")
    logging.info(f"[Robco] 生成: {path.name} ({len(processed.weapon_set_ammo_lines) // 2}件)")
    return path

def _create_zip_archive(robco_patcher_dir: Path) -> Path:
    """最終的なZIPアーカイブを作成する。"""
    zip_output_path = robco_patcher_dir.parent / f"{robco_patcher_dir.name}.zip"
    logging.info(f"[Robco] ZIPアーカイブを作成します: {zip_output_path}")
    if zip_output_path.exists():
        zip_output_path.unlink()

    shutil.make_archive(
        base_name=str(zip_output_path.with_suffix('')),
        format='zip',
        root_dir=robco_patcher_dir.parent,
        base_dir=robco_patcher_dir.name
    )
    logging.info(f"[Robco] {zip_output_path.name} の作成が完了しました。")
    return zip_output_path

class RobcoIniWriter:
    """PatchBuilder のライターとして使う Robco INI 出力。"""

    def __init__(self, robco_patcher_dir: Path, create_zip: bool = True):
        self.robco_patcher_dir = Path(robco_patcher_dir)
        self.create_zip = create_zip

    def write(self, plugin: PatchPlugin) -> Path:
        logging.info(f"{'-' * 10} Robco Patcher INI 生成 {'-' * 10}")
        processed = _process_overrides(plugin)
        robco_base_dir = self.robco_patcher_dir / "F4SE" / "Plugins" / "RobCo_Patcher"
        ini_path = _generate_ini_files(processed, robco_base_dir)
        if self.create_zip:
            _create_zip_archive(self.robco_patcher_dir)
        logging.info("[Robco] Robco INI 生成完了")
        return ini_path

