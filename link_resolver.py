# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# link_resolver.py
#
# 形の揃わない参照値 (FormLink, FormKey, 文字列, タプル, 辞書, 独自オブジェクト) を
# 具体的なレコードに解決する。
#
#   1. 参照自身に resolve(store) させる
#   2. 共通ルーチンで FormKey を取り出して直接解決
#   3. 生の形状 (raw / plugin+form_id 属性) を解釈して解決
#   4. 想定カテゴリを指定して再試行
#   5. 全カテゴリを走査
#   6. ストアの単引数エントリポイント (lookup / get / try_resolve)
#
# 結果は否定結果も含めてパス単位でキャッシュする。
# =============================================================================

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Optional

from errors import OperationCancelled
from form_key import FormKey, extract_identity, parse_raw_identity
from records import Record
from schema import AMMO, COBJ, OMOD, PROJECTILE, WEAPON

DEFAULT_EXPECTED_CATEGORIES = (WEAPON, AMMO, OMOD, COBJ, PROJECTILE)
LAST_RESORT_METHODS = ("lookup", "get", "try_resolve")


class ResolutionStrategy:
    """解決戦略の基底クラス。解決できなければ None を返す。"""
    name = "strategy"

    def try_resolve(self, resolver: "LinkResolver", reference, visited: set) -> Optional[Record]:
        raise NotImplementedError


class SelfResolveStrategy(ResolutionStrategy):
    name = "self-resolve"

    def try_resolve(self, resolver, reference, visited):
        if isinstance(reference, (Record, FormKey, str, tuple, dict)):
            return None
        method = getattr(reference, "resolve", None)
        if not callable(method):
            return None
        result = method(GuardedStoreView(resolver, visited))
        return result if isinstance(result, Record) else None


class IdentityExtractionStrategy(ResolutionStrategy):
    name = "identity"

    def try_resolve(self, resolver, reference, visited):
        identity = extract_identity(reference)
        if identity is None:
            return None
        return resolver.resolve_by_identity(identity, visited=visited)


class RawShapeStrategy(ResolutionStrategy):
    name = "raw-shape"

    def try_resolve(self, resolver, reference, visited):
        identity = None
        for attr in ("raw", "raw_value", "text"):
            raw = getattr(reference, attr, None)
            if raw is not None:
                identity = parse_raw_identity(raw)
                if identity is not None:
                    break
        if identity is None:
            plugin = getattr(reference, "plugin", None)
            local_id = getattr(reference, "form_id", getattr(reference, "local_id", None))
            if plugin is not None and local_id is not None:
                identity = FormKey.try_create(plugin, local_id)
        if identity is None:
            return None
        return resolver.resolve_by_identity(identity, visited=visited)


class ExpectedCategoryStrategy(ResolutionStrategy):
    name = "expected-category"

    def try_resolve(self, resolver, reference, visited):
        identity = resolver.identity_of(reference)
        if identity is None:
            return None
        hint = getattr(reference, "target_category", None)
        categories = ([hint] if hint else []) + [c for c in resolver.expected_categories if c != hint]
        for category in categories:
            record = resolver.resolve_by_identity(identity, category, visited=visited)
            if record is not None:
                return record
        return None


class BroadScanStrategy(ResolutionStrategy):
    name = "broad-scan"

    def try_resolve(self, resolver, reference, visited):
        identity = resolver.identity_of(reference)
        if identity is None:
            return None
        for _, records in resolver.store.all_categories():
            for record in records:
                if record.form_key == identity:
                    return record
        return None


class LastResortStrategy(ResolutionStrategy):
    name = "last-resort"

    def try_resolve(self, resolver, reference, visited):
        for method_name in LAST_RESORT_METHODS:
            method = getattr(resolver.store, method_name, None)
            if not callable(method):
                continue
            result = method(reference)
            if isinstance(result, tuple) and len(result) == 2 and isinstance(result[0], bool):
                result = result[1] if result[0] else None
            if isinstance(result, Record):
                return result
        return None


DEFAULT_STRATEGIES = (
    SelfResolveStrategy(),
    IdentityExtractionStrategy(),
    RawShapeStrategy(),
    ExpectedCategoryStrategy(),
    BroadScanStrategy(),
    LastResortStrategy(),
)


class GuardedStoreView:
    """
    参照の resolve(store) に渡すストアの代理。
    ここを経由した解決は呼び出し元の visited 集合を引き継ぐ。
    """

    def __init__(self, resolver: "LinkResolver", visited: set):
        self._resolver = resolver
        self._visited = visited

    def resolve(self, identity, category=None):
        return self._resolver.resolve_by_identity(identity, category, visited=self._visited)

    def resolve_reference(self, reference):
        return self._resolver.resolve(reference, visited=self._visited)

    def winning_records(self, category):
        return self._resolver.store.winning_records(category)

    def all_categories(self):
        return self._resolver.store.all_categories()


class LinkResolver:
    """
    参照をレコードに解決するリゾルバ。1 回の処理パスにつき 1 インスタンスを使い、使い回さない。
    キャッシュへの挿入はロック付きの setdefault で行い、同一キーへの同時書き込みでも最初の結果が残る。
    """

    def __init__(self, store, strategies=DEFAULT_STRATEGIES, expected_categories=DEFAULT_EXPECTED_CATEGORIES):
        if store is None:
            raise ValueError("LinkResolver にはレコードストアが必要です")
        self.store = store
        self.strategies = tuple(strategies)
        self.expected_categories = tuple(expected_categories)
        self.stats = Counter()
        self._cache: dict = {}
        self._lock = threading.Lock()
        self._logged_failures: set = set()

    # --- 公開 API ---

    def resolve(self, reference, visited: set | None = None) -> Optional[Record]:
        """参照をレコードに解決する。解決できなければ None。"""
        if reference is None:
            return None
        if isinstance(reference, FormKey):
            return self.resolve_by_identity(reference, visited=visited)
        key = ("ref", id(reference), id(self.store))
        hit = self._cache_lookup(key)
        if hit is not _MISS:
            return hit
        visited = set() if visited is None else visited
        if key in visited:
            self.stats["cycle_aborts"] += 1
            logging.debug(f"[Resolver] 循環参照を検出したため中断: {reference!r}")
            return None
        visited.add(key)
        try:
            self.stats["strategy_searches"] += 1
            result = self._run_strategies(reference, visited)
        finally:
            visited.discard(key)
        return self._cache_store(key, reference, result)

    def resolve_by_identity(self, identity: FormKey | None, category: str | None = None,
                            visited: set | None = None) -> Optional[Record]:
        """FormKey (と任意のカテゴリ) からレコードを引く。"""
        if identity is None:
            return None
        key = ("id", identity, (category or "").upper(), id(self.store))
        hit = self._cache_lookup(key)
        if hit is not _MISS:
            return hit
        visited = set() if visited is None else visited
        if key in visited:
            self.stats["cycle_aborts"] += 1
            return None
        visited.add(key)
        try:
            self.stats["identity_lookups"] += 1
            try:
                if category:
                    result = self.store.resolve(identity, category)
                else:
                    result = self.store.resolve(identity)
            except OperationCancelled:
                raise
            except Exception as e:
                self._log_failure_once("store.resolve", e)
                result = None
        finally:
            visited.discard(key)
        if not isinstance(result, Record):
            result = None
        return self._cache_store(key, identity, result)

    def identity_of(self, reference) -> Optional[FormKey]:
        """参照から FormKey を取り出す。戦略 2 / 3 と同じ規則。"""
        identity = extract_identity(reference)
        if identity is not None:
            return identity
        plugin = getattr(reference, "plugin", None)
        local_id = getattr(reference, "form_id", getattr(reference, "local_id", None))
        if plugin is not None and local_id is not None:
            return FormKey.try_create(plugin, local_id)
        return None

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # --- 内部処理 ---

    def _run_strategies(self, reference, visited: set) -> Optional[Record]:
        for strategy in self.strategies:
            try:
                result = strategy.try_resolve(self, reference, visited)
            except OperationCancelled:
                raise
            except Exception as e:
                self._log_failure_once(strategy.name, e)
                continue
            if result is not None:
                self.stats[f"hit:{strategy.name}"] += 1
                return result
        self.stats["unresolved"] += 1
        return None

    def _cache_lookup(self, key):
        entry = self._cache.get(key)
        if entry is None:
            return _MISS
        self.stats["cache_hits"] += 1
        return entry[1]

    def _cache_store(self, key, owner, result):
        # owner を保持して id() の再利用を防ぐ
        with self._lock:
            entry = self._cache.setdefault(key, (owner, result))
        return entry[1]

    def _log_failure_once(self, strategy_name: str, error: Exception):
        failure = (strategy_name, type(error).__name__)
        self.stats[f"failure:{strategy_name}"] += 1
        with self._lock:
            if failure in self._logged_failures:
                return
            self._logged_failures.add(failure)
        logging.warning(f"[Resolver] 戦略 '{strategy_name}' で {type(error).__name__} が発生しました (以降は抑制): {error}")


_MISS = object()
