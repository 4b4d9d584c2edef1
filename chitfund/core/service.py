"""
Chit Fund Service - the operations callers use.

Each operation loads the aggregates it needs from storage, runs the
relevant engine, persists the result and then emits best-effort
notifications and audit records.

Serialization:
-------------
    One re-entrant lock per aggregate key, dropped once released:
        group:<id>  auction:<id>  entry:<group>:<member>:<period>  ranking:<group>
    Locks are always taken in sorted key order. Stores additionally check
    versions, so writers in other processes surface ConcurrencyConflict.

Closing an auction writes ledger entries, then the group, then the
auction. Entry creation is idempotent, so a close that failed part way
can simply be retried with the same winner.
"""

import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from chitfund.core.auction.auction import Auction, AuctionStatus, Bid, ManualExclusion
from chitfund.core.auction.state_machine import AuctionStateMachine
from chitfund.core.config import EngineConfig
from chitfund.core.errors import BusinessRuleViolation, NotFoundError, ValidationError
from chitfund.core.group.group import Group, GroupMember, PaymentModel
from chitfund.core.ledger.entry import LedgerEntry, PaymentMethod, PaymentStatus, entry_key
from chitfund.core.ledger.payment_ledger import PaymentLedger, PaymentOutcome
from chitfund.core.ledger.statement import MemberStatement, build_statement
from chitfund.core.ranking.ranking import MemberRanking, RankingEngine
from chitfund.core.settings import EngineSettings
from chitfund.core.settlement.engine import SettlementEngine, SettlementResult
from chitfund.core.sinks import (
    AuditRecord,
    AuditSink,
    Notification,
    NotificationSink,
    emit_audit,
    emit_notification,
)
from chitfund.core.storage.base import Storage
from chitfund.utils.logger import get_logger
from chitfund.utils.timeutil import utcnow
from chitfund.utils.validation import (
    MAX_NAME_LENGTH,
    MAX_PERIODS,
    ensure,
    ensure_positive_amount,
    validate_amount,
    validate_days,
    validate_identifier,
    validate_integer,
    validate_positive_amount,
    validate_string,
)

logger = get_logger("service")

ExclusionSpec = Union[ManualExclusion, Tuple[str, str]]


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class ChitFundService:
    """
    Facade over the engines, bound to one storage backend.

    Args:
        storage: Repository bundle (InMemoryStorage or StorageManager)
        config: Engine configuration
        settings: Administrator settings; seeded from `config` when omitted
        notifier: Notification sink (best effort)
        auditor: Audit sink (best effort)
        clock: Returns the current instant; injectable for tests
    """

    def __init__(
        self,
        storage: Storage,
        config: Optional[EngineConfig] = None,
        settings: Optional[EngineSettings] = None,
        notifier: Optional[NotificationSink] = None,
        auditor: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.config = config or EngineConfig()
        if settings is None:
            settings = EngineSettings()
            settings.update("DEFAULT_GRACE_PERIOD_DAYS", self.config.default_grace_period_days)
            settings.update("MIN_BID_INCREMENT", self.config.min_bid_increment)
        self.settings = settings
        self.notifier = notifier
        self.auditor = auditor
        self.clock = clock

        self.payment_ledger = PaymentLedger()
        self.settlement = SettlementEngine(storage.ledger, self.payment_ledger)
        self.auctions = AuctionStateMachine(self.settlement, self.config)
        self.ranking = RankingEngine()

        self._locks: Dict[str, _LockSlot] = {}
        self._locks_guard = threading.Lock()

    # =========================================================================
    # Locking and side effects
    # =========================================================================

    @contextmanager
    def _key_lock(self, key: str):
        # Slots live only while some caller holds or waits on them
        with self._locks_guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = _LockSlot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._locks_guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[key]

    @contextmanager
    def _locked(self, *keys: str):
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._key_lock(key))
            yield

    def _notify(
        self,
        type_: str,
        recipients: Iterable[str],
        group_id: str,
        auction_id: Optional[str] = None,
        **payload,
    ) -> None:
        if not self.settings.notifications_enabled:
            return
        recipients = tuple(recipients)
        if not recipients:
            return
        emit_notification(
            self.notifier,
            Notification(
                type=type_,
                recipients=recipients,
                group_id=group_id,
                created_at=self.clock(),
                auction_id=auction_id,
                payload=payload,
            ),
        )

    def _audit(
        self,
        action: str,
        group_id: str,
        actor: Optional[str] = None,
        target_id: Optional[str] = None,
        **details,
    ) -> None:
        emit_audit(
            self.auditor,
            AuditRecord(
                action=action,
                group_id=group_id,
                created_at=self.clock(),
                actor=actor,
                target_id=target_id,
                details=details,
            ),
        )

    # =========================================================================
    # Groups
    # =========================================================================

    def get_group(self, group_id: str) -> Group:
        return self.storage.groups.get(group_id)

    def create_group(
        self,
        group_id: str,
        name: str,
        pool_amount: int,
        capacity: int,
        commission_amount: int,
        contribution: int,
        grace_period_days: Optional[int] = None,
        payment_model: Union[PaymentModel, str] = PaymentModel.A,
    ) -> Group:
        """
        Create a group in the Forming state.

        Raises:
            ValidationError: malformed configuration
            BusinessRuleViolation: group id already taken
        """
        ensure(validate_identifier(group_id, "group_id"))
        ensure(validate_string(name, "name", MAX_NAME_LENGTH))
        ensure(validate_positive_amount(pool_amount, "pool_amount"))
        ensure(validate_integer(capacity, "capacity", 1, MAX_PERIODS))
        ensure(validate_amount(commission_amount, "commission_amount"))
        ensure(validate_positive_amount(contribution, "contribution"))
        if commission_amount >= pool_amount:
            raise ValidationError("commission_amount must be below pool_amount")
        if grace_period_days is None:
            grace_period_days = self.settings.default_grace_period_days
        ensure(validate_days(grace_period_days, "grace_period_days"))
        try:
            model = PaymentModel(payment_model)
        except ValueError:
            raise ValidationError(f"Unknown payment model: {payment_model!r}") from None

        with self._locked(f"group:{group_id}"):
            try:
                self.storage.groups.get(group_id)
            except NotFoundError:
                pass
            else:
                raise BusinessRuleViolation(
                    f"Group {group_id} already exists", reason="duplicate_group"
                )

            group = Group(
                group_id=group_id,
                name=name,
                pool_amount=pool_amount,
                capacity=capacity,
                commission_amount=commission_amount,
                contribution=contribution,
                grace_period_days=grace_period_days,
                payment_model=model,
            )
            self.storage.groups.save(group)

        logger.info(f"Group {group_id} created (pool={pool_amount}, capacity={capacity})")
        return group

    def add_member(self, group_id: str, member_id: str, name: str) -> GroupMember:
        ensure(validate_identifier(member_id, "member_id"))
        ensure(validate_string(name, "name", MAX_NAME_LENGTH))
        with self._locked(f"group:{group_id}"):
            group = self.storage.groups.get(group_id)
            member = group.add_member(member_id, name, self.clock())
            self.storage.groups.save(group)
        return member

    def remove_member(self, group_id: str, member_id: str) -> GroupMember:
        with self._locked(f"group:{group_id}"):
            group = self.storage.groups.get(group_id)
            member = group.remove_member(member_id)
            self.storage.groups.save(group)
        logger.info(f"Member {member_id} removed from group {group_id}")
        return member

    def activate_group(self, group_id: str) -> Group:
        with self._locked(f"group:{group_id}"):
            group = self.storage.groups.get(group_id)
            group.activate(self.clock(), self.config.min_members_to_activate)
            self.storage.groups.save(group)
        return group

    def close_group(self, group_id: str) -> Group:
        with self._locked(f"group:{group_id}"):
            group = self.storage.groups.get(group_id)
            group.close(self.clock())
            self.storage.groups.save(group)
        return group

    # =========================================================================
    # Auctions
    # =========================================================================

    def get_auction(self, auction_id: str) -> Auction:
        return self.storage.auctions.get(auction_id)

    def list_auctions(self, group_id: str) -> List[Auction]:
        return self.storage.auctions.list_for_group(group_id)

    def schedule_auction(
        self,
        group_id: str,
        period_number: int,
        scheduled_at: Optional[datetime] = None,
        manual_exclusions: Iterable[ExclusionSpec] = (),
        actor: Optional[str] = None,
        auction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Auction:
        """
        Schedule the auction for one period.

        Manual exclusions are ManualExclusion records or (member_id, reason)
        pairs.
        """
        exclusions = [
            e if isinstance(e, ManualExclusion)
            else ManualExclusion(member_id=e[0], reason=e[1], excluded_by=actor)
            for e in manual_exclusions
        ]

        with self._locked(f"group:{group_id}"):
            group = self.storage.groups.get(group_id)
            existing = {a.period_number for a in self.storage.auctions.list_for_group(group_id)}
            auction = self.auctions.schedule(
                group,
                period_number,
                scheduled_at or self.clock(),
                manual_exclusions=exclusions,
                existing_periods=existing,
                auction_id=auction_id,
                created_by=actor,
                notes=notes,
            )
            self.storage.auctions.save(auction)

        self._notify(
            "auction_scheduled",
            auction.eligible_member_ids(group.member_ids),
            group_id,
            auction.auction_id,
            period_number=period_number,
            scheduled_at=auction.scheduled_at.isoformat(),
            starting_bid=auction.starting_bid,
        )
        self._audit(
            "SCHEDULE_AUCTION", group_id, actor, auction.auction_id,
            period_number=period_number, eligible_count=auction.eligible_count,
        )
        return auction

    def start_auction(self, auction_id: str, actor: Optional[str] = None) -> Auction:
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            group = self.storage.groups.get(auction.group_id)
            self.auctions.start(auction, self.clock(), started_by=actor, group=group)
            self.storage.auctions.save(auction)

        self._audit("START_AUCTION", auction.group_id, actor, auction_id)
        return auction

    def place_bid(
        self,
        auction_id: str,
        member_id: str,
        amount: int,
        placed_by: Optional[Tuple[str, str]] = None,
    ) -> Bid:
        """
        Place a bid; `placed_by` = (admin_id, admin_name) for a proxy bid.
        """
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            group = self.storage.groups.get(auction.group_id)
            bid = self.auctions.place_bid(
                auction, group, member_id, amount, self.clock(),
                proxy=placed_by, min_increment=self.settings.min_bid_increment,
            )
            self.storage.auctions.save(auction)

        self._notify(
            "bid_confirmation", [member_id], auction.group_id, auction_id,
            amount=amount, period_number=auction.period_number,
        )
        if placed_by:
            self._audit(
                "PLACE_BID_ON_BEHALF", auction.group_id, placed_by[0], auction_id,
                member_id=member_id, amount=amount,
            )
        else:
            self._audit("PLACE_BID", auction.group_id, member_id, auction_id, amount=amount)
        return bid

    def exclude_member(
        self,
        auction_id: str,
        member_id: str,
        reason: str,
        actor: Optional[str] = None,
    ) -> ManualExclusion:
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            group = self.storage.groups.get(auction.group_id)
            exclusion = self.auctions.exclude_member(auction, group, member_id, reason, actor)
            self.storage.auctions.save(auction)

        self._audit(
            "EXCLUDE_MEMBER", auction.group_id, actor, auction_id,
            member_id=member_id, reason=reason,
        )
        return exclusion

    def revert_exclusion(
        self, auction_id: str, member_id: str, actor: Optional[str] = None
    ) -> ManualExclusion:
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            group = self.storage.groups.get(auction.group_id)
            exclusion = self.auctions.revert_exclusion(auction, group, member_id)
            self.storage.auctions.save(auction)

        self._audit("REVERT_EXCLUSION", auction.group_id, actor, auction_id, member_id=member_id)
        return exclusion

    def close_auction(
        self,
        auction_id: str,
        winner_id: Optional[str] = None,
        manual_dividend_override: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> SettlementResult:
        """
        Close an auction and settle the period.

        Without `winner_id` the highest eligible bidder wins (earliest bid on
        a tie).
        Calling again with the same winner after a failure completes the
        settlement without duplicating ledger entries.
        """
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            with self._locked(f"group:{auction.group_id}"):
                group = self.storage.groups.get(auction.group_id)
                already_closed = auction.status == AuctionStatus.CLOSED

                if winner_id is None:
                    winner_id = (
                        self.auctions.default_winner(auction, group)
                        if auction.status != AuctionStatus.SCHEDULED
                        else ""
                    )

                result = self.auctions.close(
                    auction,
                    group,
                    winner_id,
                    self.clock(),
                    manual_dividend_override=manual_dividend_override,
                    closed_by=actor,
                )
                if result.winner_recorded:
                    self.storage.groups.save(group)
                self.storage.auctions.save(auction)

        if not already_closed:
            self._notify(
                "winner_announcement", [auction.winner_id], auction.group_id, auction_id,
                period_number=auction.period_number,
                winning_bid=auction.winning_bid,
                amount_received=group.pool_amount - group.commission_amount - auction.winning_bid,
            )
            self._notify(
                "non_winner_result",
                [m for m in group.member_ids if m != auction.winner_id],
                auction.group_id,
                auction_id,
                period_number=auction.period_number,
                winner_name=auction.winner_name,
                dividend_per_member=auction.dividend_per_member,
            )
            self._audit(
                "CLOSE_AUCTION", auction.group_id, actor, auction_id,
                winner_id=auction.winner_id,
                winning_bid=auction.winning_bid,
                total_dividend=auction.total_dividend,
                dividend_per_member=auction.dividend_per_member,
            )

        if self.config.ranking_on_payment:
            self.recalculate_group_rankings(auction.group_id)
        return result

    def delete_auction(self, auction_id: str, actor: Optional[str] = None) -> int:
        """
        Delete an auction with everything it settled.

        Order: ledger entries of the period, winner on the group, auction.

        Returns:
            Number of ledger entries removed
        """
        with self._locked(f"auction:{auction_id}"):
            auction = self.storage.auctions.get(auction_id)
            with self._locked(f"group:{auction.group_id}"):
                removed = self.storage.ledger.delete_for_period(
                    auction.group_id, auction.period_number
                )
                if auction.winner_id:
                    group = self.storage.groups.get(auction.group_id)
                    if group.revert_winner(auction.winner_id, auction.period_number):
                        self.storage.groups.save(group)
                self.storage.auctions.delete(auction_id)

        logger.info(f"Auction {auction_id} deleted ({removed} ledger entries removed)")
        self._audit(
            "DELETE_AUCTION", auction.group_id, actor, auction_id,
            period_number=auction.period_number, entries_removed=removed,
        )
        self.recalculate_group_rankings(auction.group_id)
        return removed

    # =========================================================================
    # Payments
    # =========================================================================

    def get_entry(self, group_id: str, member_id: str, period_number: int) -> LedgerEntry:
        return self.storage.ledger.get(group_id, member_id, period_number)

    def list_entries(
        self, group_id: str, period_number: Optional[int] = None
    ) -> List[LedgerEntry]:
        return self.storage.ledger.list_for_group(group_id, period_number)

    def record_payment(
        self,
        group_id: str,
        member_id: str,
        period_number: int,
        amount: int,
        method: Union[PaymentMethod, str],
        paid_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> PaymentOutcome:
        """
        Record a payment against one ledger entry.

        Raises:
            InvalidAmount: amount not a positive integer
            ValidationError: method unknown or not enabled
            NotFoundError: no such entry
            ExceedsOutstanding: amount above the outstanding balance
        """
        ensure_positive_amount(amount)
        payment_method = PaymentMethod.parse(method)
        if payment_method not in self.settings.payment_methods:
            raise ValidationError(f"Payment method {payment_method.value} is not enabled")

        key = entry_key(group_id, member_id, period_number)
        with self._locked(f"entry:{key}"):
            entry = self.storage.ledger.get(group_id, member_id, period_number)
            outcome = self.payment_ledger.record_payment(
                entry,
                amount,
                payment_method,
                paid_at or self.clock(),
                reference=reference,
                notes=notes,
                recorded_by=recorded_by,
            )
            self.storage.ledger.save(entry)

        self._notify(
            "payment_received", [member_id], group_id,
            period_number=period_number,
            amount=outcome.applied_amount,
            outstanding=entry.outstanding_balance,
            status=entry.status.value,
        )
        self._audit(
            "RECORD_PAYMENT", group_id, recorded_by, key,
            amount=amount, method=payment_method.value, metadata_only=outcome.metadata_only,
        )

        if self.config.ranking_on_payment and not outcome.metadata_only:
            self.recalculate_group_rankings(group_id)
        return outcome

    def extend_grace_period(
        self,
        group_id: str,
        member_id: str,
        period_number: int,
        additional_days: int,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LedgerEntry:
        key = entry_key(group_id, member_id, period_number)
        with self._locked(f"entry:{key}"):
            entry = self.storage.ledger.get(group_id, member_id, period_number)
            self.payment_ledger.extend_grace(
                entry, additional_days, reason, self.clock(), extended_by=actor
            )
            self.storage.ledger.save(entry)

        self._notify(
            "grace_extended", [member_id], group_id,
            period_number=period_number,
            additional_days=additional_days,
            grace_end=entry.grace_end.isoformat(),
        )
        self._audit(
            "EXTEND_GRACE_PERIOD", group_id, actor, key,
            additional_days=additional_days, reason=reason,
        )
        return entry

    def refresh_overdue(self, group_id: str, now: Optional[datetime] = None) -> List[LedgerEntry]:
        """
        Re-evaluate every unpaid entry of a group at `now`.

        Returns:
            Entries whose status or delay changed (already saved)
        """
        now = now or self.clock()
        changed = []
        for candidate in self.storage.ledger.list_for_group(group_id):
            if candidate.status == PaymentStatus.PAID:
                continue
            key = candidate.entry_id
            with self._locked(f"entry:{key}"):
                entry = self.storage.ledger.get(
                    candidate.group_id, candidate.member_id, candidate.period_number
                )
                before = (entry.status, entry.delay_days, entry.grace_period_used)
                self.payment_ledger.refresh(entry, now)
                if (entry.status, entry.delay_days, entry.grace_period_used) != before:
                    self.storage.ledger.save(entry)
                    changed.append(entry)

        if changed:
            logger.info(f"Group {group_id}: {len(changed)} entries updated by overdue refresh")
        return changed

    # =========================================================================
    # Rankings
    # =========================================================================

    def recalculate_group_rankings(self, group_id: str) -> List[MemberRanking]:
        with self._locked(f"ranking:{group_id}"):
            group = self.storage.groups.get(group_id)
            entries = self.storage.ledger.list_for_group(group_id)
            rankings = self.ranking.recalculate_group(group, entries, self.clock())
            self.storage.rankings.replace_for_group(group_id, rankings)
        return rankings

    def get_rankings(self, group_id: str) -> List[MemberRanking]:
        return self.storage.rankings.list_for_group(group_id)

    # =========================================================================
    # Statements
    # =========================================================================

    def member_statement(self, group_id: str, member_id: str) -> MemberStatement:
        """Passbook for one member, rebuilt from the ledger."""
        group = self.storage.groups.get(group_id)
        member = group.get_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found in group {group_id}")

        rank = None
        for ranking in self.storage.rankings.list_for_group(group_id):
            if ranking.member_id == member_id:
                rank = ranking.rank

        return build_statement(
            group_id,
            group.name,
            member_id,
            member.name,
            group.pool_amount,
            self.storage.ledger.list_for_member(group_id, member_id),
            self.clock(),
            rank=rank,
        )

    # =========================================================================
    # Coordinators
    # =========================================================================

    def delete_group(self, group_id: str, actor: Optional[str] = None) -> Dict[str, int]:
        """
        Delete a group and everything it owns.

        Order: rankings, ledger entries, auctions, group.
        """
        with self._locked(f"group:{group_id}", f"ranking:{group_id}"):
            self.storage.groups.get(group_id)
            counts = {"rankings": self.storage.rankings.delete_for_group(group_id)}
            counts["entries"] = self.storage.ledger.delete_for_group(group_id)
            auctions = self.storage.auctions.list_for_group(group_id)
            for auction in auctions:
                self.storage.auctions.delete(auction.auction_id)
            counts["auctions"] = len(auctions)
            self.storage.groups.delete(group_id)

        logger.info(f"Group {group_id} deleted: {counts}")
        self._audit("DELETE_GROUP", group_id, actor, group_id, **counts)
        return counts
