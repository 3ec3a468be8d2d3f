"""Push synchronization engine.

Modules
-------
selector      Eligibility predicate, batch selection, statistics
builder       Selected ids → wire payload (namespaced ids)
transport     httpx client with typed error classification
reconciler    Per-record verdict → sync_status, one transaction per batch
controller    Session state machine tying the above together
models        pydantic wire models (camelCase)
error_codes   Server error code messages and tips
"""

from usage_spine.push.controller import (
    BatchResult,
    PushOptions,
    PushReport,
    PushSessionController,
    PushState,
)

__all__ = ["BatchResult", "PushOptions", "PushReport", "PushSessionController", "PushState"]
