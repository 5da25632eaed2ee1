"""
Query statistics row handed over by the data layer
"""

from dataclasses import dataclass
from typing import Optional

from sqladvisor.ai.prompts import RecommendationRequest
from sqladvisor.core.constants import QUERY_PREVIEW_LENGTH


@dataclass
class QueryInfo:
    """
    One top resource-consuming query.

    Times are in microseconds, as reported by sys.dm_exec_query_stats.
    """
    query_text: str
    total_cpu_time: int = 0
    total_logical_reads: int = 0
    total_duration: int = 0
    execution_count: int = 0
    execution_plan_xml: Optional[str] = None

    @property
    def query_text_preview(self) -> str:
        if len(self.query_text) > QUERY_PREVIEW_LENGTH:
            return self.query_text[:QUERY_PREVIEW_LENGTH] + "..."
        return self.query_text

    @property
    def avg_cpu_time_ms(self) -> float:
        """Average CPU time per execution (ms)"""
        if self.execution_count <= 0:
            return 0.0
        return self.total_cpu_time / self.execution_count / 1000

    @property
    def avg_duration_ms(self) -> float:
        """Average elapsed time per execution (ms)"""
        if self.execution_count <= 0:
            return 0.0
        return self.total_duration / self.execution_count / 1000

    @property
    def avg_logical_reads(self) -> float:
        if self.execution_count <= 0:
            return 0.0
        return self.total_logical_reads / self.execution_count

    @property
    def has_plan(self) -> bool:
        return bool(self.execution_plan_xml and self.execution_plan_xml.strip())

    def to_request(self, max_plan_length: Optional[int] = None) -> RecommendationRequest:
        if max_plan_length is None:
            return RecommendationRequest(self.query_text, self.execution_plan_xml)
        return RecommendationRequest(self.query_text, self.execution_plan_xml, max_plan_length)
