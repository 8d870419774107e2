import locale
import logging
from pathlib import Path

import psutil

def read_text_utf8_fallback(path: Path) -> str:
    """
    UTF-8 でファイルを読み込み、失敗した場合はシステムのデフォルトエンコーディングで再試行する。
    """
    try:
        return path.read_text(encoding='utf-8')
    except UnicodeDecodeError:
        # UTF-8で失敗した場合、ロケール依存のエンコーディングでフォールバック
        fallback_encoding = locale.getpreferredencoding()
        return path.read_text(encoding=fallback_encoding, errors='replace')

def process_memory_mb() -> float:
    """現在のプロセスの常駐メモリ (RSS) を MB 単位で返す。"""
    return psutil.Process().memory_info().rss / (1024 * 1024)

def log_memory_usage(stage: str) -> None:
    """処理段階ごとのメモリ使用量をログに残す。"""
    try:
        logging.info(f"[Memory] {stage}: {process_memory_mb():.1f} MB")
    except psutil.Error as e:
        logging.debug(f"[Memory] メモリ使用量の取得に失敗: {e}")
