from __future__ import annotations

from enum import Enum


class ProcurementStatus(str, Enum):
    PLANNING = "planning"
    RFQ_PREPARATION = "rfq_preparation"
    RFQ_PUBLISHED = "rfq_published"
    SUBMISSION_CLOSING = "submission_closing"
    EVALUATION = "evaluation"
    AWARD_PENDING = "award_pending"
    AWARDED = "awarded"
    CONTRACT_EXECUTION = "contract_execution"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RFQStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    OPEN = "open"
    CLOSED = "closed"
    EVALUATED = "evaluated"
    AWARDED = "awarded"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    TECHNICAL_EVALUATION = "technical_evaluation"
    FINANCIAL_EVALUATION = "financial_evaluation"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"
    AWARDED = "awarded"
    NOT_AWARDED = "not_awarded"
    WITHDRAWN = "withdrawn"
    REJECTED = "rejected"


class EvaluationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CONSOLIDATED = "consolidated"
    DELETED = "deleted"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    ESCALATED = "escalated"
    RECALLED = "recalled"
    EXPIRED = "expired"
    DELETED = "deleted"


class AwardStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    AWARDED = "awarded"
    CONTRACT_GENERATED = "contract_generated"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ContractStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PENDING_SIGNATURE = "pending_signature"
    EXECUTED = "executed"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    AMENDED = "amended"
    TERMINATED = "terminated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ClarificationStatus(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    PUBLISHED = "published"
    DELETED = "deleted"


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class StepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
