"""
billing_services -- Package init and public API.

Responsibility:
    Imperative shell around the pure billing engines: staged, cancellable
    retrieval of the engine's configuration inputs and validated editing
    of commission overrides with write-back to the host.

Architecture position:
    Services -- orchestration over engines + config + kernel.

    Dependency direction:
        billing_services/ -> billing_engines/, billing_config/, billing_kernel/  (allowed)
        billing_engines/  -> billing_services/  (FORBIDDEN)
        billing_kernel/   -> billing_services/  (FORBIDDEN)

Invariants enforced:
    - Host collaborators are injected through Protocols; no service
      constructs its own data source.
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("services")

from billing_services.commission_editor import (
    CommissionEditor,
    CommissionWriteBack,
    apply_scope_override,
    build_scope_payload,
    parse_draft_pct,
    prune_overrides,
    remove_scope_override,
    validate_scope,
)
from billing_services.retrieval import (
    CalcConfigSource,
    CancellationToken,
    CommissionFeedSource,
    RetrievalResult,
    StagedRetrieval,
)

__all__ = [
    "CalcConfigSource",
    "CancellationToken",
    "CommissionEditor",
    "CommissionFeedSource",
    "CommissionWriteBack",
    "RetrievalResult",
    "StagedRetrieval",
    "apply_scope_override",
    "build_scope_payload",
    "parse_draft_pct",
    "prune_overrides",
    "remove_scope_override",
    "validate_scope",
]
