# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# config_manager.py
#
# 変更履歴:
# v3.0:
#   - get_int / get_list を追加。
#   - 除外プラグイン一覧 (Fallout4.esm と DLC の自動除外を含む) を組み立てる
#     get_excluded_plugins を追加。
#   - スキーマバージョンと出力モードの取得メソッドを追加。
#   - xEdit / MO2 関連のパス項目を廃止し、records_file を基準に動作するようにした。
# v2.1 (2025-09-29):
#   - パスの '/' と '\' の混在を os.path.normpath で吸収するようにした。
# =============================================================================

import configparser
from pathlib import Path
from typing import Optional
import os

from schema import SchemaVersion

BASE_GAME_MASTER = "Fallout4.esm"
DLC_MASTERS = (
    "DLCRobot.esm",
    "DLCworkshop01.esm",
    "DLCCoast.esm",
    "DLCworkshop02.esm",
    "DLCworkshop03.esm",
    "DLCNukaWorld.esm",
)
OUTPUT_MODES = ("esp", "ini", "both")

class ConfigManager:
    """
    パッチャーの config.ini を読み、[Paths] / [Parameters] / [Output] の値を
    型付きで返す。相対パスは project_root を基準に解決する。
    """
    def __init__(self, config_path: str = 'config.ini'):
        self.config_path = Path(config_path).resolve()
        if not self.config_path.is_file():
            raise FileNotFoundError(f"設定ファイルが見つかりません: {self.config_path}")

        self.config = configparser.ConfigParser(interpolation=configparser.BasicInterpolation())
        self.config.read(self.config_path, encoding='utf-8')

        # project_root 未指定時は config.ini の置き場所が基準
        root = self.get_string('Paths', 'project_root', '.')
        self.project_root = (self.config_path.parent / root).resolve()

    def get_path(self, section: str, key: str) -> Path:
        """値をパスとして読み、project_root 基準の絶対パスで返す。"""
        p = Path(os.path.normpath(self.config.get(section, key)))
        if not p.is_absolute():
            p = self.project_root / p
        return p.resolve()

    def get_string(self, section: str, key: str, fallback: str = '') -> str:
        return self.config.get(section, key, fallback=fallback)

    def get_boolean(self, section: str, key: str, fallback: bool = False) -> bool:
        return self.config.getboolean(section, key, fallback=fallback)

    def get_int(self, section: str, key: str, fallback: int = 0) -> int:
        """指定されたセクションとキーから値を整数として返す。"""
        return self.config.getint(section, key, fallback=fallback)

    def get_list(self, section: str, key: str) -> list[str]:
        """カンマまたは改行区切りの値をリストとして返す。空要素は除く。"""
        raw = self.get_string(section, key)
        return [item.strip() for item in raw.replace('\n', ',').split(',') if item.strip()]

    def get_parameter(self, key: str) -> str:
        """[Parameters] セクションから指定されたパラメータを文字列として返す。"""
        return self.get_string('Parameters', key)

    def get_schema_version(self) -> Optional[SchemaVersion]:
        """
        [Parameters] schema_version を返す。'auto' の場合は None 相当として
        呼び出し側 (レコードストアの推定結果) に委ねるため UNKNOWN ではなく None を返す。
        """
        value = self.get_parameter('schema_version').strip().lower()
        if value in ('', 'auto'):
            return None
        return SchemaVersion.from_string(value)

    def get_output_mode(self) -> str:
        mode = self.get_string('Output', 'mode', 'esp').strip().lower()
        if mode not in OUTPUT_MODES:
            raise ValueError(f"[Output] mode の値が不正です: {mode} (esp / ini / both のいずれか)")
        return mode

    def get_excluded_plugins(self) -> list[str]:
        """除外プラグインの一覧。設定に応じて Fallout4.esm と DLC マスターを加える。"""
        excluded = self.get_list('Parameters', 'excluded_plugins')
        if self.get_boolean('Parameters', 'exclude_fallout4_esm', True):
            excluded.append(BASE_GAME_MASTER)
        if self.get_boolean('Parameters', 'exclude_dlc_esms', True):
            excluded.extend(DLC_MASTERS)
        seen = set()
        result = []
        for name in excluded:
            if name.lower() not in seen:
                seen.add(name.lower())
                result.append(name)
        return result
