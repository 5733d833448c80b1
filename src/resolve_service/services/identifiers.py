"""Collision-resistant external identifiers.

Identifiers look like ``RTXN-ABCD-EFGH-JKLM-NPQR``: a type prefix followed
by sixteen characters drawn from an alphabet without look-alike glyphs
(no ``0/O``, ``1/I``), grouped in blocks of four.
"""

from __future__ import annotations

import re
import secrets

ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ID_LENGTH = 16
_GROUP_SIZE = 4

TRANSACTION_PREFIX = "RTXN"
DISPUTE_PREFIX = "RDISP"
ESCALATION_PREFIX = "RESC"
EVIDENCE_PREFIX = "REVD"
AGENT_PREFIX = "RAGENT"

_SUFFIX_PATTERN = (
    "-".join([f"[{ID_ALPHABET}]{{{_GROUP_SIZE}}}"] * (ID_LENGTH // _GROUP_SIZE))
)


def _random_suffix() -> str:
    chars = "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))
    return "-".join(chars[i : i + _GROUP_SIZE] for i in range(0, ID_LENGTH, _GROUP_SIZE))


def generate_id(prefix: str) -> str:
    """Generate an identifier with the given prefix."""
    return f"{prefix}-{_random_suffix()}"


def generate_transaction_id() -> str:
    return generate_id(TRANSACTION_PREFIX)


def generate_dispute_id() -> str:
    return generate_id(DISPUTE_PREFIX)


def generate_escalation_id() -> str:
    return generate_id(ESCALATION_PREFIX)


def generate_evidence_id() -> str:
    return generate_id(EVIDENCE_PREFIX)


def generate_agent_id() -> str:
    return generate_id(AGENT_PREFIX)


def is_valid_id(value: str, prefix: str) -> bool:
    """Check that value is a well-formed identifier with the given prefix."""
    return re.fullmatch(f"{re.escape(prefix)}-{_SUFFIX_PATTERN}", value) is not None
