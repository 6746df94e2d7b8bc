"""loanreview: callback-driven loan review orchestration."""

from .api import ApiResponse, ReviewApi
from .contracts import (
    AggregateDecision,
    AttributeStatus,
    LoanAttribute,
    ReviewType,
    Route,
    TaskAction,
    TaskRequest,
    TaskResult,
    WorkflowState,
    WorkflowStatus,
)
from .decision import determine
from .dispatch import TaskDispatcher
from .engine import get_engine
from .persistence import get_store
from .routing import route
from .runtime import build_runtime
from .service import ReviewOrchestrationService

__version__ = "0.1.0"
__all__ = [
    "AggregateDecision",
    "ApiResponse",
    "AttributeStatus",
    "LoanAttribute",
    "ReviewApi",
    "ReviewOrchestrationService",
    "ReviewType",
    "Route",
    "TaskAction",
    "TaskDispatcher",
    "TaskRequest",
    "TaskResult",
    "WorkflowState",
    "WorkflowStatus",
    "build_runtime",
    "determine",
    "get_engine",
    "get_store",
    "route",
]
