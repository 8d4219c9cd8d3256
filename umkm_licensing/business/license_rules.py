# ==== LICENSE TYPES, STATUSES AND WORKFLOW RULES ==== #

"""
License workflow rules for the UMKM licensing platform.

This module defines the closed enumerations used throughout the workflow
(license types, application statuses, priorities, review decisions, document
types) together with the business tables that drive it: the transition table,
priority SLA windows, per-type default processing days and stage numbering.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet


# ==== ENUMERATION DEFINITIONS ==== #


class LicenseType(str, Enum):
    """
    License types supported by the platform.

    NIB is the primary business registration number; SIUP the trading
    license; TDP the company registration certificate; NPWP the tax id.
    """

    NIB = "nib"
    SIUP = "siup"
    TDP = "tdp"
    NPWP = "npwp"
    HALAL = "halal"
    ENVIRONMENTAL = "environmental"
    EXPORT_IMPORT = "export_import"


class ApplicationStatus(str, Enum):
    """
    Application lifecycle states.

    Status progression: DRAFT → SUBMITTED → PROCESSING ⇄ PENDING_DOCUMENTS →
    APPROVED | REJECTED. EXPIRED and SUSPENDED are reached from APPROVED by
    lifecycle events, not reviewer decisions.
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    PENDING_DOCUMENTS = "pending_documents"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class PriorityLevel(str, Enum):
    """Priority of an application; drives the SLA window."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReviewDecision(str, Enum):
    """Reviewer decision folded into a status change and a history entry."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    ESCALATE = "escalate"


class DocumentType(str, Enum):
    """Supporting document types attached to an application."""

    KTP = "ktp"
    COMPANY_DEED = "company_deed"
    TAX_CERTIFICATE = "tax_certificate"
    BANK_STATEMENT = "bank_statement"
    BUSINESS_PLAN = "business_plan"
    LOCATION_PERMIT = "location_permit"
    OTHER = "other"


class WorkflowAction(str, Enum):
    """Actions that can be attempted against an application."""

    SUBMIT = "submit"
    ASSIGN_REVIEWER = "assign_reviewer"
    START_REVIEW = "start_review"
    RESUME_PROCESSING = "resume_processing"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    ESCALATE = "escalate"
    EXPIRE = "expire"
    SUSPEND = "suspend"
    DELETE = "delete"


# ==== STATUS GROUPS ==== #


# Statuses that count against a reviewer's workload
ACTIVE_REVIEW_STATUSES: FrozenSet[ApplicationStatus] = frozenset({
    ApplicationStatus.SUBMITTED,
    ApplicationStatus.PROCESSING,
    ApplicationStatus.PENDING_DOCUMENTS,
})

# Terminal for the review workflow
TERMINAL_STATUSES: FrozenSet[ApplicationStatus] = frozenset({
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.EXPIRED,
})

# A reviewer may never be attached while in one of these
UNASSIGNED_STATUSES: FrozenSet[ApplicationStatus] = frozenset({
    ApplicationStatus.DRAFT,
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.EXPIRED,
    ApplicationStatus.SUSPENDED,
})


# ==== TRANSITION TABLE ==== #


ALLOWED_FROM: Dict[WorkflowAction, FrozenSet[ApplicationStatus]] = {
    WorkflowAction.SUBMIT: frozenset({ApplicationStatus.DRAFT}),
    WorkflowAction.ASSIGN_REVIEWER: ACTIVE_REVIEW_STATUSES,
    WorkflowAction.START_REVIEW: frozenset({ApplicationStatus.SUBMITTED}),
    WorkflowAction.RESUME_PROCESSING: frozenset({ApplicationStatus.PENDING_DOCUMENTS}),
    WorkflowAction.APPROVE: frozenset({
        ApplicationStatus.PROCESSING,
        ApplicationStatus.PENDING_DOCUMENTS,
    }),
    WorkflowAction.REJECT: frozenset({
        ApplicationStatus.PROCESSING,
        ApplicationStatus.PENDING_DOCUMENTS,
    }),
    WorkflowAction.REQUEST_REVISION: frozenset({ApplicationStatus.PROCESSING}),
    WorkflowAction.ESCALATE: ACTIVE_REVIEW_STATUSES,
    WorkflowAction.EXPIRE: frozenset({
        ApplicationStatus.APPROVED,
        ApplicationStatus.SUSPENDED,
    }),
    WorkflowAction.SUSPEND: frozenset({ApplicationStatus.APPROVED}),
    WorkflowAction.DELETE: frozenset({ApplicationStatus.DRAFT}),
}


def is_allowed(action: WorkflowAction, status: ApplicationStatus) -> bool:
    """Check whether ``action`` may be attempted from ``status``."""
    return status in ALLOWED_FROM[action]


def target_status(action: WorkflowAction, current: ApplicationStatus) -> ApplicationStatus:
    """
    Resolve the status an action leads to.

    Assignment does not move the state machine, so it maps back onto the
    current status.
    """
    match action:
        case WorkflowAction.SUBMIT:
            return ApplicationStatus.SUBMITTED
        case WorkflowAction.ASSIGN_REVIEWER:
            return current
        case WorkflowAction.START_REVIEW | WorkflowAction.RESUME_PROCESSING | WorkflowAction.ESCALATE:
            return ApplicationStatus.PROCESSING
        case WorkflowAction.APPROVE:
            return ApplicationStatus.APPROVED
        case WorkflowAction.REJECT:
            return ApplicationStatus.REJECTED
        case WorkflowAction.REQUEST_REVISION:
            return ApplicationStatus.PENDING_DOCUMENTS
        case WorkflowAction.EXPIRE:
            return ApplicationStatus.EXPIRED
        case WorkflowAction.SUSPEND:
            return ApplicationStatus.SUSPENDED
        case WorkflowAction.DELETE:
            return current


def decision_action(decision: ReviewDecision) -> WorkflowAction:
    """Map a reviewer decision onto the workflow action it triggers."""
    match decision:
        case ReviewDecision.APPROVE:
            return WorkflowAction.APPROVE
        case ReviewDecision.REJECT:
            return WorkflowAction.REJECT
        case ReviewDecision.REQUEST_REVISION:
            return WorkflowAction.REQUEST_REVISION
        case ReviewDecision.ESCALATE:
            return WorkflowAction.ESCALATE


# ==== SLA AND PROCESSING ESTIMATES ==== #


SLA_HOURS: Dict[PriorityLevel, int] = {
    PriorityLevel.URGENT: 24,
    PriorityLevel.HIGH: 72,
    PriorityLevel.NORMAL: 168,
    PriorityLevel.LOW: 336,
}

DEFAULT_PROCESSING_DAYS: Dict[LicenseType, int] = {
    LicenseType.NIB: 7,
    LicenseType.SIUP: 14,
    LicenseType.TDP: 10,
    LicenseType.NPWP: 3,
    LicenseType.HALAL: 30,
    LicenseType.ENVIRONMENTAL: 45,
    LicenseType.EXPORT_IMPORT: 21,
}


def sla_deadline(priority: PriorityLevel, start: datetime) -> datetime:
    """Estimated completion for ``priority`` counted from ``start``."""
    return start + timedelta(hours=SLA_HOURS[priority])


def default_processing_days(license_type: LicenseType) -> int:
    """Typical processing days used to seed a draft's estimate."""
    return DEFAULT_PROCESSING_DAYS[license_type]


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from ``start`` to ``end`` (floored)."""
    return (end - start) // timedelta(days=1)


# ==== STAGE NUMBERING ==== #


STAGE_FOR_STATUS: Dict[ApplicationStatus, int] = {
    ApplicationStatus.DRAFT: 1,
    ApplicationStatus.SUBMITTED: 2,
    ApplicationStatus.PROCESSING: 3,
    ApplicationStatus.PENDING_DOCUMENTS: 3,
    ApplicationStatus.APPROVED: 4,
    ApplicationStatus.REJECTED: 4,
    ApplicationStatus.EXPIRED: 4,
    ApplicationStatus.SUSPENDED: 4,
}


def advance_stage(current_stage: int, total_stages: int, status: ApplicationStatus) -> int:
    """
    Stage counter after entering ``status``.

    The counter never moves backwards and never exceeds ``total_stages``.
    """
    return min(total_stages, max(current_stage, STAGE_FOR_STATUS[status]))
