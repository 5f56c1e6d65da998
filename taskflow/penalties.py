"""
Penalty Module

Tiered penalties for overdue work. At most one pending penalty exists per
task; re-evaluation only ever upgrades it in place. Approved or waived
penalties are final.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any, Union, TYPE_CHECKING
import logging
import uuid

from .clock import Clock, SystemClock
from .errors import NotFoundError, InvalidTransitionError
from .storage import StorageInterface, StorageRecord, parse_datetime
from .templates import coerce_enum

if TYPE_CHECKING:
    from .notifications import NotificationQueue
    from .stats import StatsAggregator
    from .tasks import Task


logger = logging.getLogger("taskflow.penalties")


class PenaltyTier(Enum):
    """Penalty brackets"""
    MINOR = "minor_delay"
    MODERATE = "moderate_delay"
    SEVERE = "severe_delay"
    CANCELLED_OVERDUE = "cancelled_overdue"


class PenaltyStatus(Enum):
    """Penalty lifecycle"""
    PENDING = "pending"
    APPROVED = "approved"
    WAIVED = "waived"
    DEDUCTED = "deducted"


@dataclass(frozen=True)
class PenaltyRule:
    """One row of the tier table; ``max_hours`` None means unbounded"""
    tier: PenaltyTier
    amount: Decimal
    label: str
    max_hours: Optional[float] = None


@dataclass
class Penalty(StorageRecord):
    """Penalty charged to an employee for one task"""
    task_id: str
    employee_id: str
    employee_name: Optional[str]
    tier: PenaltyTier
    amount: Decimal
    reason: str
    status: PenaltyStatus = PenaltyStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    payroll_period: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Penalty':
        data = dict(data)
        data['tier'] = PenaltyTier(data['tier'])
        data['status'] = PenaltyStatus(data['status'])
        data['amount'] = Decimal(data['amount'])
        data['approved_at'] = parse_datetime(data.get('approved_at'))
        return super().from_dict(data)


def default_rules(minor_amount: Union[Decimal, str] = "50.00",
                  moderate_amount: Union[Decimal, str] = "150.00",
                  severe_amount: Union[Decimal, str] = "300.00",
                  minor_max_hours: float = 24,
                  moderate_max_hours: float = 72) -> List[PenaltyRule]:
    """The three duration tiers, ascending"""
    return [
        PenaltyRule(PenaltyTier.MINOR, Decimal(minor_amount),
                    f"Overdue < {minor_max_hours:g}h", minor_max_hours),
        PenaltyRule(PenaltyTier.MODERATE, Decimal(moderate_amount),
                    f"Overdue {minor_max_hours / 24:g}-{moderate_max_hours / 24:g} days", moderate_max_hours),
        PenaltyRule(PenaltyTier.SEVERE, Decimal(severe_amount),
                    f"Overdue > {moderate_max_hours / 24:g} days"),
    ]


class PenaltyCalculator:
    """Derives, escalates and resolves penalties"""

    def __init__(
        self,
        storage: StorageInterface,
        clock: Optional[Clock] = None,
        stats: Optional['StatsAggregator'] = None,
        notifications: Optional['NotificationQueue'] = None,
        rules: Optional[List[PenaltyRule]] = None,
        cancelled_overdue_amount: Union[Decimal, str] = "500.00"
    ):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.stats = stats
        self.notifications = notifications
        self.rules = rules or default_rules()
        self.cancelled_rule = PenaltyRule(
            PenaltyTier.CANCELLED_OVERDUE, Decimal(cancelled_overdue_amount), "Cancelled while overdue"
        )
        self.table_name = "penalties"

    def rule_for(self, hours_overdue: float, cancelled: bool = False) -> PenaltyRule:
        """Pick the tier for an overdue duration"""
        if cancelled:
            return self.cancelled_rule
        for rule in self.rules:
            if rule.max_hours is None or hours_overdue <= rule.max_hours:
                return rule
        return self.rules[-1]

    def evaluate_task(self, task: 'Task', cancelled: bool = False) -> Optional[Penalty]:
        """
        Create or escalate the penalty for an overdue task.

        Returns the created or upgraded penalty, or None when nothing changed:
        no assignee, no deadline, not yet overdue, a resolved penalty already
        exists, or the pending penalty is already at least as high.
        """
        if not task.assignee_id or task.deadline is None:
            return None

        now = self.clock.now()
        hours_overdue = task.hours_overdue(now)
        if not cancelled and hours_overdue <= 0:
            return None

        rule = self.rule_for(hours_overdue, cancelled)
        reason = f'Task "{task.title}" overdue by {hours_overdue:.0f}h ({rule.label})'

        with self.storage.atomic():
            existing = self.latest_for_task(task.id)

            if existing is not None and existing.status != PenaltyStatus.PENDING:
                return None

            if existing is not None:
                if rule.amount <= existing.amount:
                    return None
                previous_amount = existing.amount
                existing.tier = rule.tier
                existing.amount = rule.amount
                existing.reason = reason
                existing.updated_at = now
                if not self.storage.save_if(self.table_name, existing.id, existing.to_dict(),
                                            {"status": PenaltyStatus.PENDING.value}):
                    return None
                logger.info(
                    "Escalated penalty %s for task %s: %s -> %s (%s)",
                    existing.id, task.id, previous_amount, rule.amount, rule.tier.value
                )
                penalty = existing
            else:
                penalty = Penalty(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    task_id=task.id,
                    employee_id=task.assignee_id,
                    employee_name=task.assignee_name,
                    tier=rule.tier,
                    amount=rule.amount,
                    reason=reason
                )
                self.storage.save(self.table_name, penalty.id, penalty.to_dict())
                logger.info(
                    "Created %s penalty %s for task %s (%s)",
                    rule.tier.value, penalty.amount, task.id, task.assignee_name
                )

            if self.notifications:
                self.notifications.enqueue(task, "penalty")

        return penalty

    def latest_for_task(self, task_id: str) -> Optional[Penalty]:
        penalties = [Penalty.from_dict(row) for row in self.storage.find(self.table_name, {"task_id": task_id})]
        if not penalties:
            return None
        return max(penalties, key=lambda p: p.created_at)

    def get_penalty(self, penalty_id: str) -> Penalty:
        """Get a penalty by ID"""
        data = self.storage.load(self.table_name, penalty_id)
        if not data:
            raise NotFoundError("penalty", penalty_id)
        return Penalty.from_dict(data)

    def list_penalties(
        self,
        status: Optional[Union[PenaltyStatus, str]] = None,
        employee_id: Optional[str] = None,
        payroll_period: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Penalty]:
        """List penalties, newest first"""
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = coerce_enum(PenaltyStatus, status, "status").value
        if employee_id is not None:
            filters["employee_id"] = employee_id
        if payroll_period is not None:
            filters["payroll_period"] = payroll_period
        if task_id is not None:
            filters["task_id"] = task_id

        penalties = [Penalty.from_dict(row) for row in self.storage.find(self.table_name, filters)]
        penalties.sort(key=lambda p: p.created_at, reverse=True)
        return penalties[:limit] if limit else penalties

    def approve(self, penalty_id: str, approved_by: str,
                payroll_period: Optional[str] = None) -> Penalty:
        """Approve a pending penalty and add it to the employee's total"""
        with self.storage.atomic():
            penalty = self.get_penalty(penalty_id)
            if penalty.status != PenaltyStatus.PENDING:
                raise InvalidTransitionError("penalty", penalty_id, "approve", penalty.status.value)

            now = self.clock.now()
            penalty.status = PenaltyStatus.APPROVED
            penalty.approved_by = approved_by
            penalty.approved_at = now
            penalty.payroll_period = payroll_period
            self._save(penalty, PenaltyStatus.PENDING, "approve")

            if self.stats:
                self.stats.add_penalty(penalty.employee_id, penalty.employee_name, penalty.amount)

        logger.info("Penalty %s approved by %s", penalty_id, approved_by)
        return penalty

    def waive(self, penalty_id: str, approved_by: str, notes: Optional[str] = None) -> Penalty:
        """Waive a pending penalty"""
        with self.storage.atomic():
            penalty = self.get_penalty(penalty_id)
            if penalty.status != PenaltyStatus.PENDING:
                raise InvalidTransitionError("penalty", penalty_id, "waive", penalty.status.value)

            penalty.status = PenaltyStatus.WAIVED
            penalty.approved_by = approved_by
            penalty.approved_at = self.clock.now()
            penalty.notes = notes
            self._save(penalty, PenaltyStatus.PENDING, "waive")

        logger.info("Penalty %s waived by %s", penalty_id, approved_by)
        return penalty

    def mark_deducted(self, penalty_id: str, payroll_period: Optional[str] = None) -> Penalty:
        """Record that an approved penalty was deducted in payroll"""
        with self.storage.atomic():
            penalty = self.get_penalty(penalty_id)
            if penalty.status != PenaltyStatus.APPROVED:
                raise InvalidTransitionError("penalty", penalty_id, "deduct", penalty.status.value)

            penalty.status = PenaltyStatus.DEDUCTED
            if payroll_period:
                penalty.payroll_period = payroll_period
            self._save(penalty, PenaltyStatus.APPROVED, "deduct")

        return penalty

    def summary(self) -> List[Dict[str, Any]]:
        """Per-employee penalty totals, highest pending amount first"""
        rows: Dict[str, Dict[str, Any]] = {}
        for data in self.storage.load_all(self.table_name):
            penalty = Penalty.from_dict(data)
            row = rows.setdefault(penalty.employee_id, {
                "employee_id": penalty.employee_id,
                "employee_name": penalty.employee_name,
                "penalty_count": 0,
                "pending_count": 0,
                "approved_count": 0,
                "waived_count": 0,
                "total_approved": Decimal("0"),
                "total_pending": Decimal("0"),
            })
            row["penalty_count"] += 1
            if penalty.status == PenaltyStatus.PENDING:
                row["pending_count"] += 1
                row["total_pending"] += penalty.amount
            elif penalty.status == PenaltyStatus.WAIVED:
                row["waived_count"] += 1
            else:
                # Deducted penalties were approved first
                row["approved_count"] += 1
                row["total_approved"] += penalty.amount

        return sorted(rows.values(), key=lambda r: (-r["total_pending"], r["employee_id"]))

    def _save(self, penalty: Penalty, previous: PenaltyStatus, verb: str) -> None:
        penalty.updated_at = self.clock.now()
        if not self.storage.save_if(self.table_name, penalty.id, penalty.to_dict(),
                                    {"status": previous.value}):
            raise InvalidTransitionError("penalty", penalty.id, verb)
