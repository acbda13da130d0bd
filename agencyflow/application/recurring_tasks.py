"""
Recurring task rules - the due-rule poller plus stop / resume / delete / edit use cases.

process_recurring_task_rules() is called by the background scheduler every few
minutes. Each due rule is handled in its own transaction: the spawned tasks and
the advanced next_run_at are committed together, so a retry after a failure
never duplicates a task.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from agencyflow.application.errors import AccessDeniedError, NotFoundError, ValidationError
from agencyflow.domain.access import Actor, can_manage_agency_scope
from agencyflow.domain.recurrence import TASK_FREQUENCIES, next_occurrence
from agencyflow.domain.task_status import (
    TODO,
    TaskStatusValidationError,
    validate_proof,
    validate_status,
)
from agencyflow.infrastructure.db.models import Agency, RecurringTaskRuleModel, TaskModel
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = (
    "title", "description", "category", "status", "priority", "estimated_hours",
    "assignee_id", "client_id", "proof",
)
SCHEDULE_FIELDS = ("frequency", "day_of_week", "day_of_month")


class RecurringRuleValidationError(ValidationError):
    pass


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------

def spawn_task(rule: RecurringTaskRuleModel) -> TaskModel:
    """Concrete task for the rule's current occurrence (due at the selected next_run_at)."""
    return TaskModel(
        agency_id=rule.agency_id,
        created_by_id=rule.created_by_id,
        recurring_rule_id=rule.id,
        title=rule.title,
        description=rule.description,
        category=rule.category,
        priority=rule.priority,
        estimated_hours=rule.estimated_hours,
        assignee_id=rule.assignee_id,
        client_id=rule.client_id,
        proof=list(rule.proof) if rule.proof else None,
        status=rule.status or TODO,
        due_date=rule.next_run_at,
    )


def process_recurring_task_rules(db: Session, now: datetime | None = None) -> int:
    """
    Spawn one task per due active rule and advance the rule by one step.

    A rule that fell several occurrences behind stays due and gets its next
    task on the following tick. Returns the number of tasks created. A failing
    rule is rolled back and logged; its next_run_at stays put so the next
    tick retries it.
    """
    now = now or datetime.now(timezone.utc)
    repo = RecurrenceRepository(db)
    due = repo.due_rules(now)
    if not due:
        return 0

    # snapshot ids: a rollback expires the loaded rows
    rule_ids = [rule.id for rule in due]
    created = 0
    for rule_id in rule_ids:
        try:
            with repo.transaction():
                rule = repo.get_rule(rule_id)
                if rule is None or not rule.is_active or rule.next_run_at > now:
                    continue
                repo.add_task(spawn_task(rule))
                rule.next_run_at = next_occurrence(
                    rule.next_run_at, rule.frequency, rule.day_of_week, rule.day_of_month,
                )
            created += 1
        except Exception:
            logger.exception("Failed to process recurring rule_id=%s", rule_id)

    logger.info("Recurring tasks: %d task(s) created from %d due rule(s)", created, len(rule_ids))
    return created


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_fields(fields: dict) -> dict:
    out = dict(fields)
    if "title" in out:
        out["title"] = (out["title"] or "").strip()
        if not out["title"]:
            raise RecurringRuleValidationError("Title cannot be empty")
    if "frequency" in out and out["frequency"] not in TASK_FREQUENCIES:
        raise RecurringRuleValidationError(
            f"frequency must be one of {', '.join(TASK_FREQUENCIES)}"
        )
    dow = out.get("day_of_week")
    if dow is not None and not 0 <= dow <= 6:
        raise RecurringRuleValidationError("day_of_week must be between 0 and 6")
    dom = out.get("day_of_month")
    if dom is not None and not 1 <= dom <= 31:
        raise RecurringRuleValidationError("day_of_month must be between 1 and 31")
    hours = out.get("estimated_hours")
    if hours is not None and (isinstance(hours, bool) or not isinstance(hours, int) or hours < 1):
        raise RecurringRuleValidationError("estimated_hours must be a positive integer")
    try:
        if out.get("status") is not None:
            validate_status(out["status"])
        if "proof" in out:
            out["proof"] = validate_proof(out["proof"]) or None
    except TaskStatusValidationError as e:
        raise RecurringRuleValidationError(str(e)) from e
    return out


# ---------------------------------------------------------------------------
# Use cases
# ---------------------------------------------------------------------------

class _RuleUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = RecurrenceRepository(db)

    def _load_authorized(self, rule_id: int, actor: Actor) -> RecurringTaskRuleModel:
        if actor.is_specialist:
            raise AccessDeniedError()
        rule = self.repo.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("Recurring rule not found")
        if not can_manage_agency_scope(actor, frozenset(self.repo.agency_member_ids(rule.agency_id))):
            raise AccessDeniedError()
        return rule


class CreateRecurringRuleUseCase(_RuleUseCase):
    def execute(
        self,
        actor: Actor,
        title: str,
        frequency: str,
        first_run_at: datetime,
        agency_id: int | None = None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        **template,
    ) -> RecurringTaskRuleModel:
        unknown = set(template) - set(TEMPLATE_FIELDS)
        if unknown:
            raise RecurringRuleValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        fields = _validate_fields(dict(
            template, title=title, frequency=frequency,
            day_of_week=day_of_week, day_of_month=day_of_month,
        ))

        if actor.is_specialist:
            raise AccessDeniedError()
        if agency_id is None:
            agency_ids = self.repo.agency_ids_for_user(actor.user_id)
            if not agency_ids:
                raise RecurringRuleValidationError("No agency found.")
            agency_id = agency_ids[0]
        elif not can_manage_agency_scope(actor, frozenset(self.repo.agency_member_ids(agency_id))):
            raise AccessDeniedError()

        fields.setdefault("status", TODO)
        if fields["status"] is None:
            fields["status"] = TODO
        rule = RecurringTaskRuleModel(
            agency_id=agency_id,
            created_by_id=actor.user_id,
            next_run_at=first_run_at,
            is_active=True,
            **fields,
        )
        with self.repo.transaction():
            self.repo.add_rule(rule)
        logger.info("Recurring rule_id=%s created (%s), first run at %s", rule.id, rule.frequency, first_run_at)
        return rule


class UpdateRecurringRuleUseCase(_RuleUseCase):
    """Sparse update. An explicit next_run_at (or first_run_at) resets the cadence pointer."""

    def execute(
        self,
        rule_id: int,
        actor: Actor,
        next_run_at: datetime | None = None,
        first_run_at: datetime | None = None,
        **changes,
    ) -> RecurringTaskRuleModel:
        unknown = set(changes) - set(TEMPLATE_FIELDS) - set(SCHEDULE_FIELDS)
        if unknown:
            raise RecurringRuleValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        fields = _validate_fields(changes)
        rule = self._load_authorized(rule_id, actor)

        with self.repo.transaction():
            for key, value in fields.items():
                setattr(rule, key, value)
            pointer = next_run_at or first_run_at
            if pointer is not None:
                rule.next_run_at = pointer
        return rule


class StopRecurringRuleUseCase(_RuleUseCase):
    def execute(self, rule_id: int, actor: Actor) -> RecurringTaskRuleModel:
        rule = self._load_authorized(rule_id, actor)
        with self.repo.transaction():
            rule.is_active = False
        logger.info("Recurring rule_id=%s stopped by user_id=%s", rule_id, actor.user_id)
        return rule


class ResumeRecurringRuleUseCase(_RuleUseCase):
    def execute(self, rule_id: int, actor: Actor) -> RecurringTaskRuleModel:
        rule = self._load_authorized(rule_id, actor)
        with self.repo.transaction():
            rule.is_active = True
        logger.info("Recurring rule_id=%s resumed by user_id=%s", rule_id, actor.user_id)
        return rule


class DeleteRecurringRuleUseCase(_RuleUseCase):
    def execute(self, rule_id: int, actor: Actor) -> None:
        rule = self._load_authorized(rule_id, actor)
        with self.repo.transaction():
            self.repo.delete_rule(rule)
        logger.info("Recurring rule_id=%s deleted by user_id=%s", rule_id, actor.user_id)


def list_recurring_rules(db: Session, actor: Actor) -> list[RecurringTaskRuleModel]:
    """Rules of every agency the actor belongs to (all agencies for platform admins)."""
    if actor.is_specialist:
        raise AccessDeniedError()
    repo = RecurrenceRepository(db)
    if actor.role.is_platform_admin:
        agency_ids = [a.id for a in db.query(Agency).all()]
    else:
        agency_ids = repo.agency_ids_for_user(actor.user_id)
    return repo.rules_for_agencies(agency_ids)
