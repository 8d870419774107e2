# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# Orchestrator.py
#
# 1 回の処理パス (インデックス構築 -> 候補抽出 -> 確認 -> パッチ生成 -> 診断出力)
# を順に実行するオーケストレータ。
# =============================================================================

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import reverse_index
from candidates import Candidate, CancellationToken, ConfirmationContext, ExtractionContext, ProgressSink, _no_progress
from confirmers import finalize_confirm_reasons, run_confirmers
from detectors import create_detector
from diagnostic_writer import DiagnosticWriter
from errors import MissingCollaboratorError, OperationCancelled
from link_resolver import LinkResolver
from patch_builder import DEFAULT_PATCH_NAME, PatchBuilder, PatchResult
from plugin_writer import PluginWriter
from providers import RecipeCandidateProvider, ReverseReferenceCandidateProvider
from record_store import JsonRecordStore
from robco_ini_generate import RobcoIniWriter
from schema import SchemaVersion, get_profile
from utils import log_memory_usage


@dataclass
class PassResult:
    """1 回の処理パスの結果。"""
    candidates: list[Candidate] = field(default_factory=list)
    detector_name: str = ""
    reference_keys: int = 0
    reference_entries: int = 0
    patch: Optional[PatchResult] = None
    diagnostics: list[Path] = field(default_factory=list)

    @property
    def confirmed_count(self) -> int:
        return sum(1 for c in self.candidates if c.confirmed)


class Orchestrator:
    """全自動パッチ処理のオーケストレータ。"""

    def __init__(self, config_manager, mode: str | None = None, records_file: Path | None = None):
        self.config = config_manager
        self.mode = mode or self.config.get_output_mode()
        self.records_file = records_file

    # --- 設定値 ---

    def _records_path(self) -> Path:
        return Path(self.records_file) if self.records_file else self.config.get_path('Paths', 'records_file')

    def _schema_version(self, store) -> SchemaVersion:
        configured = self.config.get_schema_version()
        if configured is not None:
            return configured
        return getattr(store, "schema_version", SchemaVersion.UNKNOWN)

    def _writers(self) -> list:
        writers = []
        if self.mode in ("esp", "both"):
            writers.append(PluginWriter(self.config.get_path('Paths', 'output_dir')))
        if self.mode in ("ini", "both"):
            writers.append(RobcoIniWriter(self.config.get_path('Paths', 'robco_patcher_dir')))
        return writers

    def load_store(self) -> JsonRecordStore:
        path = self._records_path()
        logging.info(f"[Orchestrator] レコードストアを読み込みます: {path}")
        store = JsonRecordStore.from_file(path)
        logging.info(f"[Orchestrator] レコード {len(store)} 件 (schema={store.schema_version.value})")
        return store

    # --- 処理パス ---

    def run_pass(self, store, resolver: LinkResolver | None = None, cancellation: CancellationToken | None = None,
                 progress: ProgressSink | None = None) -> PassResult:
        """
        1 回分の処理パスを実行する。

        resolver を省略した場合は store から LinkResolver を作る。
        キャンセルされた場合は OperationCancelled をそのまま送出し、ファイルは書き出さない。
        """
        cancellation = cancellation or CancellationToken()
        progress = progress or _no_progress

        logging.info("ステップ1: 前提条件の確認")
        if store is None:
            raise MissingCollaboratorError("record store")
        if resolver is None:
            resolver = LinkResolver(store)

        schema_version = self._schema_version(store)
        enumerable_limit = self.config.get_int('Parameters', 'enumerable_scan_limit', 16)
        context = ExtractionContext(
            store=store,
            resolver=resolver,
            cancellation=cancellation,
            progress=progress,
            excluded_plugins=frozenset(self.config.get_excluded_plugins()),
            schema=get_profile(schema_version),
            enumerable_limit=enumerable_limit,
        )
        diagnostics = DiagnosticWriter(self.config.get_path('Paths', 'artifacts_dir'), context.timestamp, progress)
        result = PassResult()
        diagnostics.write_start_marker()
        progress("処理を開始しました")

        logging.info("ステップ2: 逆参照インデックス構築")
        index = reverse_index.build(store.all_categories(), context.excluded_plugins, cancellation)
        result.reference_keys = len(index)
        result.reference_entries = index.entry_count
        diagnostics.write_reverse_map_marker(len(index), index.entry_count)
        log_memory_usage("逆参照インデックス構築後")
        progress(f"逆参照インデックス: キー {len(index)} 件")

        logging.info("ステップ3: 弾薬変更検出器の選択")
        detector = create_detector(schema_version, resolver, enumerable_limit)
        result.detector_name = detector.name
        diagnostics.write_detector_selected(detector.name)

        logging.info("ステップ4: 候補の抽出")
        result.candidates = self._collect_candidates(context)
        progress(f"候補 {len(result.candidates)} 件を抽出しました")

        logging.info("ステップ5: 候補の確認")
        confirmation = ConfirmationContext.from_extraction(
            context, detector, index,
            nested_depth=self.config.get_int('Parameters', 'nested_scan_depth', 2),
        )
        run_confirmers(result.candidates, confirmation)
        diagnostics.write_detection_pass_marker()
        finalize_confirm_reasons(result.candidates, index, detector.name)
        progress(f"確定 {result.confirmed_count} 件 / 候補 {len(result.candidates)} 件")

        logging.info("ステップ6: パッチ生成")
        cancellation.raise_if_cancelled()
        builder = PatchBuilder(
            resolver,
            schema=context.schema,
            writers=self._writers(),
            patch_name=self.config.get_string('Output', 'patch_name', DEFAULT_PATCH_NAME),
            author=self.config.get_string('Output', 'author', 'MunitionAutoPatcher'),
            cancellation=cancellation,
        )
        result.patch = builder.build(result.candidates)

        logging.info("ステップ7: 診断ファイル出力")
        for path in (
            diagnostics.write_results_csv(result.candidates),
            diagnostics.write_zero_reference_report(result.candidates),
        ):
            if path is not None:
                result.diagnostics.append(path)
        result.diagnostics.extend(diagnostics.write_plugin_report(
            self.config.get_parameter('diagnostic_plugin').strip(),
            result.candidates, context.weapons, index,
        ))
        diagnostics.write_completion_marker()
        log_memory_usage("処理パス終了時")
        logging.info(f"[Orchestrator] 解決統計: {dict(resolver.stats)}")
        return result

    def _collect_candidates(self, context: ExtractionContext) -> list[Candidate]:
        """プロバイダを実行して候補を集める。インデックス完成後なので並列実行してもよい。"""
        providers = [
            RecipeCandidateProvider(),
            ReverseReferenceCandidateProvider(context.enumerable_limit),
        ]

        if self.config.get_boolean('Parameters', 'parallel_providers', False):
            with ThreadPoolExecutor(max_workers=len(providers)) as executor:
                batches = list(executor.map(lambda p: p.collect(context), providers))
        else:
            batches = [p.collect(context) for p in providers]

        candidates = []
        for provider, batch in zip(providers, batches):
            logging.info(f"[Orchestrator] プロバイダ {provider.name}: {len(batch)} 件")
            candidates.extend(batch)
        return candidates

    def run_full_process(self, cancellation: CancellationToken | None = None) -> bool:
        """全自動フローを実行。"""
        logging.info("全自動処理開始")
        try:
            result = self.run_pass(self.load_store(), cancellation=cancellation)
        except (OperationCancelled, MissingCollaboratorError):
            raise
        except Exception as e:
            logging.critical(f"[Main] 処理パスの実行中に例外が発生しました: {e}", exc_info=True)
            return False

        if result.patch is not None and result.patch.written:
            for path in result.patch.output_paths:
                logging.info(f"[Main] 出力: {path}")
        else:
            logging.warning("[Main] 出力ファイルは生成されませんでした。")
        logging.info(f"全工程正常完了 (確定 {result.confirmed_count} 件 / 候補 {len(result.candidates)} 件)")
        return True
