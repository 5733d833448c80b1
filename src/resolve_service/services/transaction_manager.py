"""Transaction lifecycle and escrow management."""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING, Any

from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.actors import external_id_of, party_summary, resolve_actor
from resolve_service.services.deadlines import add_days, resolve_transaction, to_iso, utc_now
from resolve_service.services.identifiers import generate_transaction_id
from resolve_service.services.models import AgentStatus, EscrowStatus, TransactionStatus
from resolve_service.services.side_effects import after_commit, notify_safely

if TYPE_CHECKING:
    from logging import Logger

    from resolve_service.services.collaborators import AgentDirectory, Notifier
    from resolve_service.services.deadlines import Clock
    from resolve_service.services.transaction_store import TransactionStore

DEFAULT_EXPIRY_DAYS = 7
MAX_EXPIRY_DAYS = 30
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

_COMPLETABLE_STATUSES = frozenset({TransactionStatus.ACCEPTED, TransactionStatus.IN_PROGRESS})
_ESCROW_FUNDABLE_STATUSES = frozenset({TransactionStatus.ACCEPTED, TransactionStatus.IN_PROGRESS})
_LIST_ROLES = frozenset({"proposer", "receiver", "both"})


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class TransactionManager:
    """
    Owns proposal, response, completion and the nested escrow state machine.

    Reads and writes apply lazy expiry first: a PROPOSED transaction past
    its ``expires_at`` is persisted as EXPIRED the moment it is touched.
    """

    def __init__(
        self,
        store: TransactionStore,
        directory: AgentDirectory,
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
        logger: Logger | None = None,
        default_expiry_days: int = DEFAULT_EXPIRY_DAYS,
        max_expiry_days: int = MAX_EXPIRY_DAYS,
    ) -> None:
        self._store = store
        self._directory = directory
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._default_expiry_days = default_expiry_days
        self._max_expiry_days = max_expiry_days

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a transaction row to its external projection."""
        return {
            "transaction_id": row["transaction_id"],
            "proposer": party_summary(self._directory, row["proposer_id"]),
            "receiver": party_summary(self._directory, row["receiver_id"]),
            "title": row["title"],
            "description": row["description"],
            "terms": row["terms"],
            "stated_value_cents": row["stated_value_cents"],
            "currency": row["currency"],
            "metadata": row["metadata"],
            "status": row["status"],
            "proposed_at": row["proposed_at"],
            "responded_at": row["responded_at"],
            "completed_at": row["completed_at"],
            "expires_at": row["expires_at"],
            "has_disputes": row["has_disputes"],
            "escrow": self._escrow_view(row),
        }

    def _escrow_view(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "amount_cents": row["escrow_amount_cents"],
            "currency": row["escrow_currency"],
            "status": row["escrow_status"],
            "funded_at": row["escrow_funded_at"],
            "released_at": row["escrow_released_at"],
            "released_to": external_id_of(self._directory, row["escrow_released_to"]),
        }

    def _apply_expiry(self, row: dict[str, Any]) -> dict[str, Any]:
        """Persist a pending lazy expiry and return the up-to-date row."""
        resolution = resolve_transaction(row, self._clock())
        if not resolution.transitioned:
            return row
        changed = self._store.update(
            row["id"], {"status": resolution.status}, expected_status=row["status"]
        )
        if changed > 0:
            self._logger.info(
                "Transaction expired",
                extra={"transaction_id": row["transaction_id"], "expires_at": row["expires_at"]},
            )
        refreshed = self._store.get_by_id(row["id"])
        if refreshed is None:
            msg = f"Transaction {row['transaction_id']} not found after expiry"
            raise RuntimeError(msg)
        return refreshed

    def _load(self, transaction_id: str) -> dict[str, Any]:
        row = self._store.get_by_external_id(transaction_id)
        if row is None:
            raise ServiceError(
                "TRANSACTION_NOT_FOUND",
                "Transaction not found",
                404,
                {"transaction_id": transaction_id},
            )
        return self._apply_expiry(row)

    def _reload(self, internal_id: str) -> dict[str, Any]:
        row = self._store.get_by_id(internal_id)
        if row is None:
            msg = f"Transaction {internal_id} not found after update"
            raise RuntimeError(msg)
        return row

    @staticmethod
    def _require_party(row: dict[str, Any], agent: dict[str, Any]) -> None:
        if agent["id"] not in (row["proposer_id"], row["receiver_id"]):
            raise ServiceError(
                "NOT_PARTY", "You are not a party to this transaction", 403, {}
            )

    def _invalid_status(self, row: dict[str, Any], action: str) -> ServiceError:
        return ServiceError(
            "INVALID_STATUS",
            f"Cannot {action} transaction in {row['status']} status",
            409,
            {"status": row["status"]},
        )

    def _validate_proposal(
        self,
        title: str,
        terms: object,
        description: str | None,
        stated_value_cents: int | None,
        currency: str,
        expiry_days: int,
    ) -> None:
        if not isinstance(title, str) or not title.strip():
            raise ServiceError("INVALID_PAYLOAD", "Title is required", 400, {"field": "title"})
        if len(title) > MAX_TITLE_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Title must be at most {MAX_TITLE_LENGTH} characters",
                400,
                {"field": "title"},
            )
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                400,
                {"field": "description"},
            )
        if not isinstance(terms, dict):
            raise ServiceError(
                "INVALID_PAYLOAD", "Terms must be a JSON object", 400, {"field": "terms"}
            )
        if stated_value_cents is not None and not _is_positive_int(stated_value_cents):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Stated value must be a positive integer amount in cents",
                400,
                {"field": "stated_value_cents"},
            )
        if not _CURRENCY_RE.match(currency):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Currency must be a three-letter code",
                400,
                {"field": "currency"},
            )
        if not _is_positive_int(expiry_days) or expiry_days > self._max_expiry_days:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Expiry must be between 1 and {self._max_expiry_days} days",
                400,
                {"field": "expiry_days"},
            )

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    async def propose_transaction(
        self,
        proposer_id: str,
        receiver_id: str,
        title: str,
        terms: dict[str, Any],
        *,
        stated_value_cents: int | None = None,
        currency: str = "USD",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        expiry_days: int | None = None,
    ) -> dict[str, Any]:
        """
        Propose a transaction from one agent to another.

        Error precedence:
        1. RECEIVER_NOT_FOUND
        2. PROPOSER_NOT_FOUND
        3. SELF_TRANSACTION
        4. PROPOSER_NOT_ACTIVE / RECEIVER_NOT_ACTIVE
        5. INVALID_PAYLOAD
        """
        receiver = resolve_actor(self._directory, receiver_id, "RECEIVER_NOT_FOUND")
        proposer = resolve_actor(self._directory, proposer_id, "PROPOSER_NOT_FOUND")

        if proposer["id"] == receiver["id"]:
            raise ServiceError(
                "SELF_TRANSACTION", "Cannot propose a transaction to yourself", 400, {}
            )
        if self._directory.agent_status(proposer["id"]) != AgentStatus.ACTIVE:
            raise ServiceError("PROPOSER_NOT_ACTIVE", "Proposer agent is not active", 400, {})
        if self._directory.agent_status(receiver["id"]) != AgentStatus.ACTIVE:
            raise ServiceError("RECEIVER_NOT_ACTIVE", "Receiver agent is not active", 400, {})

        if expiry_days is None:
            expiry_days = self._default_expiry_days
        self._validate_proposal(
            title, terms, description, stated_value_cents, currency, expiry_days
        )

        now = self._clock()
        row: dict[str, Any] = {
            "id": f"txn-{uuid.uuid4()}",
            "transaction_id": generate_transaction_id(),
            "proposer_id": proposer["id"],
            "receiver_id": receiver["id"],
            "title": title,
            "description": description,
            "terms": terms,
            "stated_value_cents": stated_value_cents,
            "currency": currency,
            "metadata": metadata,
            "status": TransactionStatus.PROPOSED.value,
            "proposed_at": to_iso(now),
            "responded_at": None,
            "completed_at": None,
            "expires_at": add_days(now, expiry_days),
            "has_disputes": False,
            "escrow_amount_cents": None,
            "escrow_currency": None,
            "escrow_status": EscrowStatus.NONE.value,
            "escrow_funded_at": None,
            "escrow_released_at": None,
            "escrow_released_to": None,
        }
        self._store.insert(row)

        after_commit(
            self._logger,
            "increment_transaction_count",
            self._directory.increment_transaction_count,
            proposer["id"],
        )

        self._logger.info(
            "Transaction proposed",
            extra={
                "transaction_id": row["transaction_id"],
                "proposer": proposer["agent_id"],
                "receiver": receiver["agent_id"],
            },
        )
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "transaction.proposed", response)
        return response

    async def respond_to_transaction(
        self, transaction_id: str, agent_id: str, *, accept: bool
    ) -> dict[str, Any]:
        """
        Accept or reject a proposal. Only the receiver may respond.

        Error precedence:
        1. AGENT_NOT_FOUND
        2. TRANSACTION_NOT_FOUND
        3. NOT_RECEIVER
        4. TRANSACTION_EXPIRED (after persisting EXPIRED)
        5. INVALID_STATUS
        """
        agent = resolve_actor(self._directory, agent_id)
        row = self._store.get_by_external_id(transaction_id)
        if row is None:
            raise ServiceError(
                "TRANSACTION_NOT_FOUND",
                "Transaction not found",
                404,
                {"transaction_id": transaction_id},
            )
        if agent["id"] != row["receiver_id"]:
            raise ServiceError(
                "NOT_RECEIVER", "Only the receiver can respond to this transaction", 403, {}
            )

        was_proposed = row["status"] == TransactionStatus.PROPOSED
        row = self._apply_expiry(row)
        if was_proposed and row["status"] == TransactionStatus.EXPIRED:
            raise ServiceError(
                "TRANSACTION_EXPIRED",
                "Transaction proposal has expired",
                410,
                {"expires_at": row["expires_at"]},
            )
        if row["status"] != TransactionStatus.PROPOSED:
            raise self._invalid_status(row, "respond to")

        new_status = TransactionStatus.ACCEPTED if accept else TransactionStatus.REJECTED
        changed = self._store.update(
            row["id"],
            {"status": new_status.value, "responded_at": to_iso(self._clock())},
            expected_status=TransactionStatus.PROPOSED,
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "respond to")

        if accept:
            after_commit(
                self._logger,
                "increment_transaction_count",
                self._directory.increment_transaction_count,
                agent["id"],
            )

        self._logger.info(
            "Transaction responded",
            extra={"transaction_id": transaction_id, "status": new_status.value},
        )
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "transaction.responded", response)
        return response

    async def complete_transaction(self, transaction_id: str, agent_id: str) -> dict[str, Any]:
        """Mark an accepted or in-progress transaction complete. Either party may call."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(transaction_id)
        self._require_party(row, agent)
        if row["status"] not in _COMPLETABLE_STATUSES:
            raise self._invalid_status(row, "complete")

        changed = self._store.update(
            row["id"],
            {"status": TransactionStatus.COMPLETED.value, "completed_at": to_iso(self._clock())},
            expected_status=row["status"],
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "complete")

        for party_id in (row["proposer_id"], row["receiver_id"]):
            after_commit(
                self._logger,
                "record_transaction_completion",
                self._directory.record_transaction_completion,
                party_id,
            )

        self._logger.info("Transaction completed", extra={"transaction_id": transaction_id})
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "transaction.completed", response)
        return response

    async def get_transaction(self, transaction_id: str, agent_id: str) -> dict[str, Any]:
        """Read a transaction. Only its parties may see it."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(transaction_id)
        self._require_party(row, agent)
        return self._to_response(row)

    async def list_transactions(
        self,
        agent_id: str,
        *,
        status: str | None = None,
        role: str = "both",
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List an agent's transactions, newest first, with lazy expiry applied."""
        agent = resolve_actor(self._directory, agent_id)
        if role not in _LIST_ROLES:
            raise ServiceError(
                "INVALID_PAYLOAD", "role must be proposer, receiver or both", 400, {}
            )
        if status is not None and status not in TransactionStatus.__members__:
            raise ServiceError("INVALID_PAYLOAD", f"Unknown status: {status}", 400, {})
        if not 1 <= limit <= 100 or offset < 0:
            raise ServiceError("INVALID_PAYLOAD", "Invalid pagination parameters", 400, {})

        # bring stale proposals up to date so the status filter sees them
        self._store.expire_stale(to_iso(self._clock()))

        rows = self._store.list_for_agent(
            agent["id"], role=role, status=status, limit=limit, offset=offset
        )
        total = self._store.count_for_agent(agent["id"], role=role, status=status)
        return {
            "transactions": [self._to_response(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(rows) < total,
        }

    async def expire_stale_transactions(self) -> int:
        """Sweep: expire every PROPOSED transaction past its expiry. Idempotent."""
        count = self._store.expire_stale(to_iso(self._clock()))
        if count > 0:
            self._logger.info("Expired stale transactions", extra={"count": count})
        return count

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def fund_escrow(
        self,
        transaction_id: str,
        agent_id: str,
        amount_cents: int,
        currency: str = "USD",
    ) -> dict[str, Any]:
        """
        Fund escrow on an accepted or in-progress transaction.

        Funding moves an ACCEPTED transaction to IN_PROGRESS.

        Error precedence:
        1. TRANSACTION_NOT_FOUND
        2. NOT_PARTY
        3. INVALID_STATUS
        4. ESCROW_ALREADY_FUNDED
        5. INVALID_AMOUNT / INVALID_PAYLOAD
        """
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(transaction_id)
        self._require_party(row, agent)
        if row["status"] not in _ESCROW_FUNDABLE_STATUSES:
            raise self._invalid_status(row, "fund escrow for")
        if row["escrow_status"] != EscrowStatus.NONE:
            raise ServiceError(
                "ESCROW_ALREADY_FUNDED",
                f"Escrow already exists with status {row['escrow_status']}",
                409,
                {"escrow_status": row["escrow_status"]},
            )
        if not _is_positive_int(amount_cents):
            raise ServiceError("INVALID_AMOUNT", "Escrow amount must be positive", 400, {})
        if not _CURRENCY_RE.match(currency):
            raise ServiceError(
                "INVALID_PAYLOAD", "Currency must be a three-letter code", 400, {}
            )

        changed = self._store.update(
            row["id"],
            {
                "status": TransactionStatus.IN_PROGRESS.value,
                "escrow_amount_cents": amount_cents,
                "escrow_currency": currency,
                "escrow_status": EscrowStatus.FUNDED.value,
                "escrow_funded_at": to_iso(self._clock()),
            },
            expected_status=row["status"],
            expected_escrow_status=EscrowStatus.NONE,
        )
        if changed == 0:
            raise ServiceError(
                "ESCROW_ALREADY_FUNDED", "Escrow was changed by another request", 409, {}
            )

        self._logger.info(
            "Escrow funded",
            extra={
                "transaction_id": transaction_id,
                "amount_cents": amount_cents,
                "currency": currency,
            },
        )
        updated = self._reload(row["id"])
        escrow = {"transaction_id": transaction_id, **self._escrow_view(updated)}
        await notify_safely(self._notifier, self._logger, "escrow.funded", escrow)
        return {**escrow, "transaction_status": updated["status"]}

    async def release_escrow(self, transaction_id: str, agent_id: str) -> dict[str, Any]:
        """
        Release funded escrow to the counterparty of the caller.

        Allowed whenever escrow is FUNDED, including while the transaction
        is DISPUTED or COMPLETED.
        """
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(transaction_id)
        self._require_party(row, agent)
        if row["status"] in (TransactionStatus.REJECTED, TransactionStatus.EXPIRED):
            raise self._invalid_status(row, "release escrow for")
        if row["escrow_status"] != EscrowStatus.FUNDED:
            raise ServiceError(
                "ESCROW_NOT_FUNDED",
                f"Escrow is not funded (status {row['escrow_status']})",
                409,
                {"escrow_status": row["escrow_status"]},
            )

        recipient_id = (
            row["receiver_id"] if agent["id"] == row["proposer_id"] else row["proposer_id"]
        )
        changed = self._store.update(
            row["id"],
            {
                "escrow_status": EscrowStatus.RELEASED.value,
                "escrow_released_at": to_iso(self._clock()),
                "escrow_released_to": recipient_id,
            },
            expected_status=None,
            expected_escrow_status=EscrowStatus.FUNDED,
        )
        if changed == 0:
            raise ServiceError(
                "ESCROW_NOT_FUNDED", "Escrow was already released", 409, {}
            )

        self._logger.info(
            "Escrow released",
            extra={"transaction_id": transaction_id, "released_by": agent["agent_id"]},
        )
        escrow = {"transaction_id": transaction_id, **self._escrow_view(self._reload(row["id"]))}
        await notify_safely(self._notifier, self._logger, "escrow.released", escrow)
        return escrow

    async def get_escrow_status(self, transaction_id: str, agent_id: str) -> dict[str, Any]:
        """Read escrow state verbatim, including all-null fields when unfunded."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(transaction_id)
        self._require_party(row, agent)
        return {"transaction_id": transaction_id, **self._escrow_view(row)}

    # ------------------------------------------------------------------
    # Internal hooks and operations
    # ------------------------------------------------------------------

    def find_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        """Raw row lookup with lazy expiry, for the dispute manager."""
        row = self._store.get_by_external_id(transaction_id)
        return None if row is None else self._apply_expiry(row)

    def mark_transaction_disputed(self, internal_id: str) -> None:
        """Flag a transaction DISPUTED. Joins the caller's unit of work."""
        if self._store.mark_disputed(internal_id) == 0:
            raise ServiceError(
                "INVALID_STATUS", "Transaction can no longer be disputed", 409, {}
            )

    def count_transactions(self) -> int:
        return self._store.count_transactions()
