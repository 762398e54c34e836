"""
# Query Optimizer

This module inspects **execution plans** and **index statistics** to produce rule-based
optimization hints. It never changes indexes itself; `IndexCatalog.drop_unused()` is the
only destructive counterpart and is invoked explicitly by operators.

## Analysis Rules

| Condition | Suggestion |
|-----------|------------|
| docs examined > 10x docs returned | Narrowing index |
| index not used | Index on the filtered fields |
| `COLLSCAN` in the winning plan | Collection scan warning |
| blocking `SORT` stage | Compound index covering the sort key |
| more than 1000 documents returned | Pagination or filtering |

`index_used` is true when the documents examined are within 2x of the documents returned
and the winning plan contains no collection scan. A query that examined nothing counts as
indexed unless the plan is a collection scan.

## Caching

Analyses are memoized by `(collection, serialized query, sort)` in a bounded cache that
evicts in insertion order. The cache is advisory: entries are immutable and may be
dropped at any time with `clear_cache()`.

## Time Bounds

Explain and profiler reads carry `maxTimeMS` (`DB_EXPLAIN_TIMEOUT_MS`), so a busy server turns
into an error for that one call rather than a hang.

## Usage Example

```python
optimizer = QueryOptimizer(db_manager, settings, index_catalog)

analysis = await optimizer.analyze_query("users", {"role": "buyer"})
if not analysis.index_used:
    print(analysis.suggestions)

result = await optimizer.optimize_collection("users")
print(f"{result.optimized}/{result.analyzed} queries have suggestions")

slow = await optimizer.get_slow_queries(limit=5)
```
"""

import json
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pymongo.errors import PyMongoError

from docstore_ops.config import Settings
from docstore_ops.database.index_catalog import IndexCatalog
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.index_models import PRIMARY_KEY_INDEX, IndexUsage
from docstore_ops.models.query_models import (
    CollectionOptimizationResult,
    CollectionQueryStats,
    QueryAnalysis,
    SlowQuery,
)
from docstore_ops.services.database_metrics import DatabaseMetrics, database_metrics

logger = get_logger(prefix="[QueryOptimizer]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

PROFILE_COLLECTION = "system.profile"
SCAN_RATIO_THRESHOLD = 10
INDEX_USED_RATIO = 2
LARGE_RESULT_THRESHOLD = 1000
LOW_USAGE_OPS = 10

SortSpec = Sequence[Tuple[str, int]]


def _iter_stages(plan: Optional[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    """Depth-first walk over a plan tree (`inputStage` / `inputStages`)."""
    if not plan:
        return
    yield plan
    yield from _iter_stages(plan.get("inputStage"))
    for child in plan.get("inputStages", []) or []:
        yield from _iter_stages(child)


def _winning_plan(explain: Dict[str, Any]) -> Dict[str, Any]:
    winning = (explain.get("queryPlanner") or {}).get("winningPlan") or {}
    # Slot-based engine plans nest the classic tree under "queryPlan"
    return winning.get("queryPlan", winning)


class QueryOptimizer:
    """
    Explain-plan analysis, profiler access and per-collection optimization passes.

    Args:
        db_manager: Connection layer.
        settings: Slow-query threshold, explain time bound, cache size, ops/day threshold.
        index_catalog: Source of `$indexStats` usage.
        metrics: Prometheus sink; defaults to the process-wide instance.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        settings: Settings,
        index_catalog: IndexCatalog,
        metrics: Optional[DatabaseMetrics] = None,
    ):
        self.db_manager = db_manager
        self.index_catalog = index_catalog
        self.metrics = metrics or database_metrics
        self.slow_query_threshold_ms = settings.DB_SLOW_QUERY_THRESHOLD_MS
        self.explain_timeout_ms = settings.DB_EXPLAIN_TIMEOUT_MS
        self.min_ops_per_day = settings.DB_INDEX_MIN_OPS_PER_DAY
        self._cache_size = settings.DB_QUERY_ANALYSIS_CACHE_SIZE
        self._cache: "OrderedDict[str, QueryAnalysis]" = OrderedDict()

    # Explain analysis

    @staticmethod
    def _cache_key(collection: str, query: Dict[str, Any], sort: Optional[SortSpec]) -> str:
        serialized = json.dumps(query, sort_keys=True, default=str)
        if sort:
            serialized += "|" + json.dumps([list(item) for item in sort])
        return f"{collection}_{serialized}"

    async def analyze_query(
        self, collection: str, query: Dict[str, Any], sort: Optional[SortSpec] = None
    ) -> QueryAnalysis:
        """
        Explain `find(query)` (optionally sorted) and classify the plan.

        Raises:
            PyMongoError: The explain call failed or exceeded `DB_EXPLAIN_TIMEOUT_MS`.
        """
        cache_key = self._cache_key(collection, query, sort)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        start_time = time.time()
        try:
            cursor = self.db_manager.get_collection(collection).find(query)
            if sort:
                cursor = cursor.sort(list(sort))
            explain = await cursor.max_time_ms(self.explain_timeout_ms).explain()
        except PyMongoError as e:
            logger.error("Failed to analyze query on %s %s: %s", collection, query, e)
            raise
        duration = time.time() - start_time
        execution_time_ms = duration * 1000

        stats = explain.get("executionStats") or {}
        docs_examined = int(stats.get("totalDocsExamined", 0))
        docs_returned = int(stats.get("nReturned", 0))

        plan = _winning_plan(explain)
        stages = list(_iter_stages(plan))
        stage_names = [stage.get("stage") for stage in stages]
        index_name = next((stage["indexName"] for stage in stages if stage.get("indexName")), None)
        collection_scan = "COLLSCAN" in stage_names
        blocking_sort = "SORT" in stage_names

        if docs_examined > 0:
            index_used = docs_examined <= docs_returned * INDEX_USED_RATIO and not collection_scan
        else:
            index_used = not collection_scan

        suggestions = self._generate_suggestions(
            query=query,
            sort=sort,
            docs_examined=docs_examined,
            docs_returned=docs_returned,
            index_used=index_used,
            collection_scan=collection_scan,
            blocking_sort=blocking_sort,
        )

        analysis = QueryAnalysis(
            collection=collection,
            query=query,
            execution_time_ms=execution_time_ms,
            index_used=index_used,
            index_name=index_name,
            plan_stage=plan.get("stage"),
            docs_examined=docs_examined,
            docs_returned=docs_returned,
            suggestions=suggestions,
        )
        self._store(cache_key, analysis)

        self.metrics.record_query_analysis(collection, duration, index_used)
        if execution_time_ms > self.slow_query_threshold_ms:
            perf_logger.warning(
                "Slow query detected on %s (%.1fms, index used: %s): %s",
                collection,
                execution_time_ms,
                index_used,
                query,
            )
        return analysis

    @staticmethod
    def _generate_suggestions(
        query: Dict[str, Any],
        sort: Optional[SortSpec],
        docs_examined: int,
        docs_returned: int,
        index_used: bool,
        collection_scan: bool,
        blocking_sort: bool,
    ) -> List[str]:
        suggestions: List[str] = []
        query_fields = [field for field in query if not field.startswith("$")]

        if docs_examined > docs_returned * SCAN_RATIO_THRESHOLD:
            suggestions.append(
                f"Consider adding an index to reduce document scanning. "
                f"Examined {docs_examined} docs but returned only {docs_returned}"
            )

        if not index_used and query_fields:
            suggestions.append(f"Consider adding an index on: {', '.join(query_fields)}")

        if collection_scan:
            suggestions.append("Query is performing a collection scan. Add appropriate indexes.")

        if blocking_sort:
            sort_fields = [field for field, _ in sort or []]
            covering = query_fields + [field for field in sort_fields if field not in query_fields]
            message = "Query is sorting without an index. Consider adding an index that supports the sort operation."
            if covering:
                message += f" Candidate compound index: {', '.join(covering)}"
            suggestions.append(message)

        if docs_returned > LARGE_RESULT_THRESHOLD:
            suggestions.append("Query returns a large number of documents. Consider pagination or filtering.")

        return suggestions

    def _store(self, cache_key: str, analysis: QueryAnalysis):
        self._cache[cache_key] = analysis
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def clear_cache(self):
        self._cache.clear()
        logger.info("Query analysis cache cleared")

    def set_cache_size(self, max_size: int):
        """Change the cache bound, keeping the most recently inserted entries."""
        if max_size <= 0:
            raise ValueError("cache size must be a positive integer")
        self._cache_size = max_size
        while len(self._cache) > max_size:
            self._cache.popitem(last=False)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # Profiler

    async def get_slow_queries(self, limit: int = 10, threshold_ms: Optional[int] = None) -> List[SlowQuery]:
        """
        Most recent profiler entries slower than the threshold.

        Returns an empty list when the profiler is off or unreadable.
        """
        threshold = self.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        return await self._read_profile({"millis": {"$gt": threshold}}, limit)

    async def get_recent_operations(self, limit: int = 100) -> List[SlowQuery]:
        """The last `limit` profiled operations regardless of duration."""
        return await self._read_profile({}, limit)

    async def _read_profile(self, query: Dict[str, Any], limit: int) -> List[SlowQuery]:
        try:
            cursor = (
                self.db_manager.get_collection(PROFILE_COLLECTION)
                .find(query)
                .sort("ts", -1)
                .limit(limit)
                .max_time_ms(self.explain_timeout_ms)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.debug("Profiler not available or accessible: %s", e)
            return []

        return [
            SlowQuery(
                timestamp=doc.get("ts"),
                namespace=doc.get("ns"),
                command=doc.get("command") or {},
                duration_millis=doc.get("millis", 0),
                plan_summary=doc.get("planSummary"),
                keys_examined=doc.get("keysExamined"),
                docs_examined=doc.get("docsExamined"),
                docs_returned=doc.get("nreturned"),
            )
            for doc in docs
        ]

    async def enable_profiling(self, threshold_ms: Optional[int] = None) -> bool:
        """Log operations slower than `threshold_ms` to `system.profile` (profiler level 1)."""
        slow_ms = self.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        try:
            await self.db_manager.get_database().command({"profile": 1, "slowms": slow_ms})
        except PyMongoError as e:
            logger.error("Failed to enable database profiling: %s", e)
            return False
        self.slow_query_threshold_ms = slow_ms
        logger.info("Database profiling enabled (slowms=%d)", slow_ms)
        return True

    async def disable_profiling(self) -> bool:
        try:
            await self.db_manager.get_database().command({"profile": 0})
        except PyMongoError as e:
            logger.error("Failed to disable database profiling: %s", e)
            return False
        logger.info("Database profiling disabled")
        return True

    # Collection and index statistics

    async def get_query_stats(self, collection: str) -> CollectionQueryStats:
        """`collStats` figures plus index usage for one collection."""
        stats = await self.db_manager.collection_stats(collection)
        return CollectionQueryStats(
            collection=collection,
            document_count=stats.get("count", 0),
            index_count=stats.get("nindexes", 0),
            total_size=stats.get("size", 0),
            avg_obj_size=stats.get("avgObjSize", 0),
            indexes=await self.index_catalog.collection_usage(collection),
        )

    async def find_unused_indexes(self, collection: str, usage: Optional[List[IndexUsage]] = None) -> List[str]:
        usage = usage if usage is not None else await self.index_catalog.collection_usage(collection)
        return [u.index_name for u in usage if u.usage_ops == 0 and u.index_name != PRIMARY_KEY_INDEX]

    async def analyze_index_effectiveness(
        self, collection: str, usage: Optional[List[IndexUsage]] = None
    ) -> List[str]:
        """Flag indexes with fewer than 10 operations or too few operations per day."""
        usage = usage if usage is not None else await self.index_catalog.collection_usage(collection)
        now = datetime.now(timezone.utc)
        suggestions: List[str] = []

        for u in usage:
            if u.index_name == PRIMARY_KEY_INDEX:
                continue

            if u.usage_ops < LOW_USAGE_OPS:
                suggestions.append(f"Index '{u.index_name}' has low usage ({u.usage_ops} operations)")

            if u.usage_ops > 0 and u.last_used is not None:
                since = u.last_used if u.last_used.tzinfo else u.last_used.replace(tzinfo=timezone.utc)
                elapsed_days = (now - since) / timedelta(days=1)
                if elapsed_days <= 0:
                    continue
                ops_per_day = u.usage_ops / elapsed_days
                if ops_per_day < self.min_ops_per_day:
                    suggestions.append(f"Index '{u.index_name}' is rarely used ({ops_per_day:.2f} ops/day)")

        return suggestions

    @staticmethod
    def get_common_query_patterns(collection: str) -> List[Dict[str, Any]]:
        """
        Representative filters explained by `optimize_collection()`.

        Time-relative filters are truncated to the hour so repeated passes hit the analysis cache.
        """
        recent = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=24)
        patterns: Dict[str, List[Dict[str, Any]]] = {
            "users": [
                {"email": {"$exists": True}},
                {"role": "buyer"},
                {"role": "seller"},
                {"accountStatus": "active"},
                {"isEmailVerified": True},
                {"onboardingStep": "completed"},
                {"role": "buyer", "accountStatus": "active"},
                {"company": {"$exists": True}},
            ],
            "companies": [
                {"verificationStatus": "verified"},
                {"businessType": "restaurant"},
                {"businessType": "supplier"},
                {"size": "medium"},
                {"industry": {"$exists": True}},
                {"createdBy": {"$exists": True}},
            ],
            "analyticsevents": [
                {"eventType": "user_login"},
                {"eventType": "user_registration"},
                {"processed": False},
                {"timestamp": {"$gte": recent}},
            ],
        }
        return patterns.get(collection, [])

    async def optimize_collection(self, collection: str) -> CollectionOptimizationResult:
        """
        Explain the representative queries of a collection and review its indexes.

        A failing explain skips that query; the pass continues with the rest.
        """
        logger.info("Starting optimization analysis for collection: %s", collection)
        start_time = time.time()
        suggestions: List[str] = []
        analyzed = 0
        optimized = 0

        for query in self.get_common_query_patterns(collection):
            try:
                analysis = await self.analyze_query(collection, query)
            except PyMongoError as e:
                logger.warning("Skipping query %s on %s: %s", query, collection, e)
                continue
            analyzed += 1
            if analysis.suggestions:
                suggestions.extend(analysis.suggestions)
                optimized += 1

        usage = await self.index_catalog.collection_usage(collection)
        unused = await self.find_unused_indexes(collection, usage)
        if unused:
            suggestions.append(f"Consider removing unused indexes: {', '.join(unused)}")
        suggestions.extend(await self.analyze_index_effectiveness(collection, usage))

        unique_suggestions = list(dict.fromkeys(suggestions))
        perf_logger.info(
            "Optimization analysis for %s completed in %.3fs: %d analyzed, %d with suggestions, %d suggestions",
            collection,
            time.time() - start_time,
            analyzed,
            optimized,
            len(unique_suggestions),
        )
        return CollectionOptimizationResult(
            collection=collection,
            analyzed=analyzed,
            optimized=optimized,
            suggestions=unique_suggestions,
        )
