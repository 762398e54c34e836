"""
Query analysis models.

`QueryAnalysis` is derived from an explain plan and cached by the optimizer; the cache is
advisory and never the source of truth. `SlowQuery` mirrors one entry of the
`system.profile` collection.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from docstore_ops.models.index_models import IndexUsage


class QueryAnalysis(BaseModel):
    """Classification of one query's execution plan.

    Attributes:
        collection (str): Collection the query ran against.
        query (Dict[str, Any]): The filter that was explained.
        execution_time_ms (float): Wall-clock time of the explain round-trip.
        index_used (bool): True when documents examined are within 2x of documents returned
            and the plan is not a collection scan.
        index_name (Optional[str]): Index chosen by the winning plan, if any.
        plan_stage (Optional[str]): Top stage of the winning plan (`COLLSCAN`, `IXSCAN`, `SORT`, ...).
        docs_examined (int): `totalDocsExamined` from execution stats.
        docs_returned (int): `nReturned` from execution stats.
        suggestions (List[str]): Rule-based optimization hints.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    query: Dict[str, Any]
    execution_time_ms: float
    index_used: bool
    index_name: Optional[str] = None
    plan_stage: Optional[str] = None
    docs_examined: int = 0
    docs_returned: int = 0
    suggestions: List[str] = Field(default_factory=list)


class SlowQuery(BaseModel):
    """One slow operation read from the profiler log."""

    timestamp: Optional[datetime] = None
    namespace: Optional[str] = None
    command: Dict[str, Any] = Field(default_factory=dict)
    duration_millis: float = 0
    plan_summary: Optional[str] = None
    keys_examined: Optional[int] = None
    docs_examined: Optional[int] = None
    docs_returned: Optional[int] = None


class CollectionQueryStats(BaseModel):
    """`collStats` figures plus `$indexStats` usage for one collection."""

    collection: str
    document_count: int = 0
    index_count: int = 0
    total_size: int = 0
    avg_obj_size: float = 0
    indexes: List[IndexUsage] = Field(default_factory=list)


class CollectionOptimizationResult(BaseModel):
    """Outcome of `QueryOptimizer.optimize_collection()`."""

    collection: str
    analyzed: int = 0
    optimized: int = 0
    suggestions: List[str] = Field(default_factory=list)
