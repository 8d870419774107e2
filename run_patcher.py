# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# run_patcher.py
#
# コマンドラインから 1 回分の処理パスを実行する。
# 終了コード: 0 = 成功, 1 = 失敗, 130 = キャンセル
# =============================================================================

import argparse
import logging
import signal
import sys

from candidates import CancellationToken
from config_manager import OUTPUT_MODES, ConfigManager
from errors import AutoPatcherError, OperationCancelled
from Orchestrator import Orchestrator

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

def setup_logging(verbose: bool = False):
    log_format = '%(asctime)s - %(levelname)s - %(message)s'
    formatter = logging.Formatter(log_format)

    file_handler = logging.FileHandler("patcher.log", mode='w', encoding='utf-8')
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[file_handler, stream_handler])

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Munitions Auto Patcher")
    parser.add_argument("--config", default="config.ini", help="設定ファイルのパス")
    parser.add_argument("--records", default=None, help="レコードのエクスポート JSON (省略時は config.ini の records_file)")
    parser.add_argument("--mode", choices=OUTPUT_MODES, default=None, help="出力モード (省略時は config.ini の [Output] mode)")
    parser.add_argument("--verbose", action="store_true", help="DEBUG レベルのログを出力する")
    return parser

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    token = CancellationToken()

    def _on_interrupt(signum, frame):
        logging.warning("[Main] 中断要求を受け付けました。キャンセルします...")
        token.cancel()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        config_mgr = ConfigManager(args.config)
        orchestrator = Orchestrator(config_mgr, mode=args.mode, records_file=args.records)
        ok = orchestrator.run_full_process(cancellation=token)
        return EXIT_OK if ok else EXIT_FAILURE
    except OperationCancelled:
        logging.warning("[Main] 処理はキャンセルされました。出力ファイルは生成していません。")
        return EXIT_CANCELLED
    except (AutoPatcherError, FileNotFoundError, ValueError) as e:
        logging.critical(f"[Main] 処理を開始できませんでした: {e}", exc_info=True)
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous_handler)

if __name__ == '__main__':
    sys.exit(main())
