"""
Recommendation request and prompt construction for SQL Server query tuning.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqladvisor.core.config import get_settings
from sqladvisor.core.constants import PLAN_NOT_PROVIDED, PLAN_TRUNCATED_MARKER
from sqladvisor.core.exceptions import InvalidRequestError


INSTRUCTION_PREAMBLE = (
    "You are an expert SQL Server performance tuning assistant.\n"
    "Analyze the following SQL query and its associated execution plan (if provided).\n"
    "Provide specific, actionable recommendations to improve its performance, "
    "focusing on indexing, query structure, and potential bottlenecks.\n"
    "Format your recommendations clearly using markdown bullet points.\n"
)

SQL_SECTION_HEADER = "--- SQL Query ---"
PLAN_SECTION_HEADER = "--- Execution Plan (XML) ---"
RECOMMENDATIONS_HEADER = "--- Recommendations ---"


def _default_max_plan_length() -> int:
    return get_settings().ai.max_plan_length


@dataclass(frozen=True)
class RecommendationRequest:
    """A query (and optional plan) to ask the model about"""
    query_text: str
    execution_plan: Optional[str] = None
    max_plan_length: int = field(default_factory=_default_max_plan_length)

    def __post_init__(self):
        if not isinstance(self.query_text, str) or not self.query_text.strip():
            raise InvalidRequestError("Query text must not be empty")
        if self.max_plan_length <= 0:
            raise InvalidRequestError(
                "max_plan_length must be positive",
                {"max_plan_length": self.max_plan_length},
            )

    @property
    def has_plan(self) -> bool:
        return bool(self.execution_plan and self.execution_plan.strip())

    @property
    def plan_truncated(self) -> bool:
        return self.has_plan and len(self.execution_plan) > self.max_plan_length


def format_plan(execution_plan: Optional[str], max_length: int) -> str:
    """Fence the plan as XML, cutting it at max_length characters"""
    if not execution_plan or not execution_plan.strip():
        return PLAN_NOT_PROVIDED
    if len(execution_plan) > max_length:
        execution_plan = execution_plan[:max_length] + PLAN_TRUNCATED_MARKER
    return f"```xml\n{execution_plan}\n```"


def build_prompt(request: RecommendationRequest) -> str:
    """
    Build the generation prompt.

    Layout: instruction preamble, the SQL text fenced verbatim, the plan
    section, then the recommendations header the model continues from.
    """
    parts = [
        INSTRUCTION_PREAMBLE,
        f"\n{SQL_SECTION_HEADER}\n",
        f"```sql\n{request.query_text}\n```\n",
        f"\n{PLAN_SECTION_HEADER}\n",
        format_plan(request.execution_plan, request.max_plan_length) + "\n",
        f"\n{RECOMMENDATIONS_HEADER}\n",
    ]
    return "".join(parts)
