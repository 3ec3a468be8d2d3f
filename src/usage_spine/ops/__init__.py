"""Operations layer.

CLI commands call these functions; each takes an :class:`OperationContext`
plus a typed request and returns an :class:`OperationResult`.
"""

from usage_spine.ops.context import OperationContext, make_context
from usage_spine.ops.database import initialize_database
from usage_spine.ops.push import run_push
from usage_spine.ops.requests import PushStatusRequest, ResetRetriesRequest, RunPushRequest
from usage_spine.ops.result import OperationError, OperationResult
from usage_spine.ops.status import get_push_status, reset_retries

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PushStatusRequest",
    "ResetRetriesRequest",
    "RunPushRequest",
    "get_push_status",
    "initialize_database",
    "make_context",
    "reset_retries",
    "run_push",
]
