"""Retention policies, legal bounds and the retention scheduler."""

from reved_compliance.services.retention.legal import (
    LEGAL_REQUIREMENTS,
    LegalRequirement,
    requirement_for,
)
from reved_compliance.services.retention.schemas import (
    EntityOutcome,
    ManualScheduleRequest,
    PolicyExecutionResult,
    PolicyView,
    RetentionAction,
    RetentionEntityType,
    RetentionException,
    RetentionPolicyCreate,
    RetentionPolicyUpdate,
    RetentionPriority,
    RetentionReport,
    RetentionRunSummary,
    RetentionStatus,
    ScheduleView,
    TriggerCondition,
)
from reved_compliance.services.retention.service import (
    RetentionError,
    RetentionPolicyNotFoundError,
    RetentionPolicyViolationError,
    RetentionService,
    default_policies,
)

__all__ = [
    # Service
    "RetentionService",
    "default_policies",
    # Legal bounds
    "LEGAL_REQUIREMENTS",
    "LegalRequirement",
    "requirement_for",
    # Schemas
    "EntityOutcome",
    "ManualScheduleRequest",
    "PolicyExecutionResult",
    "PolicyView",
    "RetentionAction",
    "RetentionEntityType",
    "RetentionException",
    "RetentionPolicyCreate",
    "RetentionPolicyUpdate",
    "RetentionPriority",
    "RetentionReport",
    "RetentionRunSummary",
    "RetentionStatus",
    "ScheduleView",
    "TriggerCondition",
    # Errors
    "RetentionError",
    "RetentionPolicyNotFoundError",
    "RetentionPolicyViolationError",
]
