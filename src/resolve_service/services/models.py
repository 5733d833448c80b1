"""Status and outcome enumerations shared by the lifecycle managers.

Values are stored as their string form in SQLite; ``StrEnum`` members
compare equal to the stored strings.
"""

from __future__ import annotations

from enum import StrEnum


class TransactionStatus(StrEnum):
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"


class EscrowStatus(StrEnum):
    NONE = "NONE"
    FUNDED = "FUNDED"
    RELEASED = "RELEASED"


class DisputeStatus(StrEnum):
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    RESPONSE_RECEIVED = "RESPONSE_RECEIVED"
    IN_ARBITRATION = "IN_ARBITRATION"
    RULED = "RULED"
    ESCALATED = "ESCALATED"
    CLOSED = "CLOSED"


class Decision(StrEnum):
    """A party's answer to a ruling. Locked once it leaves UNDECIDED."""

    UNDECIDED = "UNDECIDED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class Ruling(StrEnum):
    CLAIMANT = "CLAIMANT"
    RESPONDENT = "RESPONDENT"
    SPLIT = "SPLIT"
    DISMISSED = "DISMISSED"


class PartyRole(StrEnum):
    CLAIMANT = "CLAIMANT"
    RESPONDENT = "RESPONDENT"


class ClaimType(StrEnum):
    NON_PERFORMANCE = "NON_PERFORMANCE"
    PARTIAL_PERFORMANCE = "PARTIAL_PERFORMANCE"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    PAYMENT_DISPUTE = "PAYMENT_DISPUTE"
    MISREPRESENTATION = "MISREPRESENTATION"
    BREACH_OF_TERMS = "BREACH_OF_TERMS"
    OTHER = "OTHER"


class EvidenceType(StrEnum):
    TEXT_STATEMENT = "TEXT_STATEMENT"
    COMMUNICATION_LOG = "COMMUNICATION_LOG"
    AGREEMENT_EXCERPT = "AGREEMENT_EXCERPT"
    TIMELINE = "TIMELINE"
    OTHER = "OTHER"


class EscalationStatus(StrEnum):
    REQUESTED = "REQUESTED"
    ASSIGNED = "ASSIGNED"
    DECIDED = "DECIDED"
    CLOSED = "CLOSED"


class AgentStatus(StrEnum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
