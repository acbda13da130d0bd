"""
Tests for the task status workflow:
- approval request fan-out to exactly the requested users
- DONE clears the approval set and fans out completion (actor excluded)
- specialist capabilities (view and status on own tasks only)
- create / update / delete validation and access
"""
from datetime import datetime

import pytest

from agencyflow.application.errors import AccessDeniedError, NotFoundError
from agencyflow.application.notification_dispatcher import (
    TASK_APPROVAL_REQUESTED,
    TASK_COMPLETED,
    NotificationDispatcher,
)
from agencyflow.application.tasks_usecases import (
    CreateTaskUseCase,
    DeleteTaskUseCase,
    GetTaskUseCase,
    PatchTaskStatusUseCase,
    TaskValidationError,
    UpdateTaskUseCase,
)
from agencyflow.domain.access import Actor, Role
from agencyflow.infrastructure.db.models import (
    Agency,
    AgencyMember,
    Client,
    ClientUser,
    TaskModel,
    User,
)


@pytest.fixture
def world(db_session):
    """Agency with an owner and a specialist, one client with two portal users, two approvers."""
    db = db_session
    owner = User(email="owner@agency.io", name="Olivia Owner", role="AGENCY")
    specialist = User(email="spec@agency.io", name="Sam Specialist", role="SPECIALIST")
    u1 = User(email="u1@client.io", name="Approver One", role="USER")
    u2 = User(email="u2@client.io", name="Approver Two", role="USER")
    member = User(email="member@client.io", name="Client Member", role="USER")
    disabled = User(email="gone@client.io", role="USER")
    agency = Agency(name="Northwind Digital")
    db.add_all([owner, specialist, u1, u2, member, disabled, agency])
    db.flush()
    client = Client(agency_id=agency.id, user_id=member.id, name="Acme Bakery", status="ACTIVE")
    db.add(client)
    db.flush()
    db.add_all([
        AgencyMember(agency_id=agency.id, user_id=owner.id),
        AgencyMember(agency_id=agency.id, user_id=specialist.id),
        ClientUser(client_id=client.id, user_id=member.id, status="ACTIVE"),
        ClientUser(client_id=client.id, user_id=disabled.id, status="DISABLED"),
    ])
    db.commit()
    return dict(
        owner=owner, specialist=specialist, u1=u1, u2=u2, member=member,
        agency=agency, client=client,
    )


def _task(db, world, **overrides):
    fields = dict(
        agency_id=world["agency"].id,
        client_id=world["client"].id,
        created_by_id=world["owner"].id,
        assignee_id=world["specialist"].id,
        title="Write landing page copy",
        status="IN_PROGRESS",
    )
    fields.update(overrides)
    task = TaskModel(**fields)
    db.add(task)
    db.commit()
    return task


def _actor(user):
    return Actor(user.id, Role.parse(user.role))


class TestApprovalFlow:
    def test_needs_approval_notifies_exactly_requested(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        u1, u2 = world["u1"].id, world["u2"].id

        PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["owner"]), "NEEDS_APPROVAL", [u1, u2],
        )

        db_session.refresh(task)
        assert task.status == "NEEDS_APPROVAL"
        assert task.approval_notify_user_ids == [u1, u2]
        [note] = recording_dispatcher.sent
        assert note.kind == TASK_APPROVAL_REQUESTED
        assert set(note.user_ids) == {u1, u2}
        assert note.entity_id == task.id
        assert note.context["requested_by"] == "Olivia Owner"
        assert note.context["client"] == "Acme Bakery"

    def test_done_clears_set_and_fans_out_completion(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        u1, u2 = world["u1"].id, world["u2"].id
        uc = PatchTaskStatusUseCase(db_session, recording_dispatcher)
        uc.execute(task.id, _actor(world["owner"]), "NEEDS_APPROVAL", [u1, u2])
        recording_dispatcher.sent.clear()

        uc.execute(task.id, _actor(world["owner"]), "DONE")

        db_session.refresh(task)
        assert task.status == "DONE"
        assert task.approval_notify_user_ids is None
        assert recording_dispatcher.of_kind(TASK_APPROVAL_REQUESTED) == []
        [done] = recording_dispatcher.of_kind(TASK_COMPLETED)
        # active client member, then approvers; the creator is the actor
        assert done.user_ids == (world["member"].id, u1, u2)
        assert done.agency_id == world["agency"].id

    def test_completing_actor_excluded(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world, approval_notify_user_ids=[world["specialist"].id], status="NEEDS_APPROVAL")

        PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["specialist"]), "DONE",
        )

        [done] = recording_dispatcher.of_kind(TASK_COMPLETED)
        assert world["specialist"].id not in done.user_ids
        assert set(done.user_ids) == {world["member"].id, world["owner"].id}

    def test_done_again_sends_nothing(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world, status="DONE")
        PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(task.id, _actor(world["owner"]), "DONE")
        assert recording_dispatcher.sent == []

    def test_empty_approval_request_keeps_set(self, db_session, world, recording_dispatcher):
        u1 = world["u1"].id
        task = _task(db_session, world, status="NEEDS_APPROVAL", approval_notify_user_ids=[u1])

        PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["owner"]), "NEEDS_APPROVAL", [],
        )

        db_session.refresh(task)
        assert task.approval_notify_user_ids == [u1]
        assert recording_dispatcher.sent == []

    def test_invalid_status_changes_nothing(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        with pytest.raises(TaskValidationError):
            PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
                task.id, _actor(world["owner"]), "SHIPPED",
            )
        db_session.refresh(task)
        assert task.status == "IN_PROGRESS"

    def test_dispatch_failure_does_not_fail_the_update(self, db_session, world):
        class BrokenDispatcher:
            def dispatch(self, note):
                raise RuntimeError("queue closed")

        task = _task(db_session, world)
        PatchTaskStatusUseCase(db_session, BrokenDispatcher()).execute(
            task.id, _actor(world["owner"]), "DONE",
        )
        db_session.refresh(task)
        assert task.status == "DONE"

    def test_status_patch_does_not_wait_for_delivery(
        self, db_session, session_factory, world, blocking_transport, thread_executor,
    ):
        dispatcher = NotificationDispatcher(session_factory, [blocking_transport], thread_executor)
        task = _task(db_session, world)

        PatchTaskStatusUseCase(db_session, dispatcher).execute(task.id, _actor(world["owner"]), "DONE")

        # returned while the completion fan-out is still held by the transport
        assert blocking_transport.started.wait(timeout=5)
        assert blocking_transport.delivered == []
        db_session.refresh(task)
        assert task.status == "DONE"

        blocking_transport.release.set()
        thread_executor.shutdown(wait=True)
        [note] = blocking_transport.delivered
        assert note.kind == TASK_COMPLETED

    def test_missing_task(self, db_session, world, recording_dispatcher):
        with pytest.raises(NotFoundError):
            PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(404, _actor(world["owner"]), "DONE")


class TestSpecialistAccess:
    def test_patch_status_on_own_task_allowed(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["specialist"]), "REVIEW",
        )
        db_session.refresh(task)
        assert task.status == "REVIEW"

    def test_edit_and_delete_denied(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        actor = _actor(world["specialist"])
        with pytest.raises(AccessDeniedError):
            UpdateTaskUseCase(db_session, recording_dispatcher).execute(task.id, actor, title="Hijacked")
        with pytest.raises(AccessDeniedError):
            DeleteTaskUseCase(db_session, recording_dispatcher).execute(task.id, actor)
        db_session.refresh(task)
        assert task.title == "Write landing page copy"

    def test_others_task_denied(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world, assignee_id=world["owner"].id)
        with pytest.raises(AccessDeniedError):
            PatchTaskStatusUseCase(db_session, recording_dispatcher).execute(
                task.id, _actor(world["specialist"]), "DONE",
            )

    def test_view_own_task_allowed_others_denied(self, db_session, world, recording_dispatcher):
        own = _task(db_session, world)
        other = _task(db_session, world, assignee_id=world["owner"].id)
        uc = GetTaskUseCase(db_session, recording_dispatcher)
        actor = _actor(world["specialist"])

        assert uc.execute(own.id, actor).id == own.id
        with pytest.raises(AccessDeniedError):
            uc.execute(other.id, actor)
        with pytest.raises(NotFoundError):
            uc.execute(9999, actor)

    def test_create_denied(self, db_session, world, recording_dispatcher):
        with pytest.raises(AccessDeniedError):
            CreateTaskUseCase(db_session, recording_dispatcher).execute(
                actor=_actor(world["specialist"]), title="New",
            )


class TestCrud:
    def test_client_member_may_edit(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        UpdateTaskUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["member"]), notes="Please use the new logo", estimated_hours=2,
        )
        db_session.refresh(task)
        assert task.notes == "Please use the new logo"
        assert task.estimated_hours == 2

    def test_outsider_denied(self, db_session, world, recording_dispatcher):
        stranger = User(email="stranger@else.io", role="AGENCY")
        db_session.add(stranger)
        db_session.commit()
        task = _task(db_session, world)
        with pytest.raises(AccessDeniedError):
            UpdateTaskUseCase(db_session, recording_dispatcher).execute(task.id, _actor(stranger), title="x")

    def test_update_validation(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        uc = UpdateTaskUseCase(db_session, recording_dispatcher)
        actor = _actor(world["owner"])
        with pytest.raises(TaskValidationError, match="Unknown"):
            uc.execute(task.id, actor, agency_id=5)
        with pytest.raises(TaskValidationError, match="empty"):
            uc.execute(task.id, actor, title="  ")
        with pytest.raises(TaskValidationError, match="estimated_hours"):
            uc.execute(task.id, actor, estimated_hours=0)
        with pytest.raises(TaskValidationError):
            uc.execute(task.id, actor, proof=[{"type": "url", "value": "not a url"}])

    def test_update_with_status_notifies(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        UpdateTaskUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["owner"]), title="Final copy", status="NEEDS_APPROVAL",
            approval_notify_user_ids=[world["u1"].id],
        )
        db_session.refresh(task)
        assert task.title == "Final copy"
        assert task.approval_notify_user_ids == [world["u1"].id]
        [note] = recording_dispatcher.sent
        assert note.user_ids == (world["u1"].id,)

    def test_move_to_other_client_and_complete_notifies_new_client(self, db_session, world, recording_dispatcher):
        other_member = User(email="team@other.io", name="Other Member", role="USER")
        other = Client(agency_id=world["agency"].id, name="Other Co", status="ACTIVE")
        db_session.add_all([other_member, other])
        db_session.flush()
        db_session.add(ClientUser(client_id=other.id, user_id=other_member.id, status="ACTIVE"))
        db_session.commit()
        task = _task(db_session, world)

        UpdateTaskUseCase(db_session, recording_dispatcher).execute(
            task.id, _actor(world["owner"]), client_id=other.id, status="DONE",
        )

        [done] = recording_dispatcher.of_kind(TASK_COMPLETED)
        assert done.user_ids == (other_member.id,)
        assert done.context["client"] == "Other Co"

    def test_delete(self, db_session, world, recording_dispatcher):
        task = _task(db_session, world)
        task_id = task.id
        DeleteTaskUseCase(db_session, recording_dispatcher).execute(task_id, _actor(world["owner"]))
        assert db_session.get(TaskModel, task_id) is None

    def test_create_needs_approval_requests_approval(self, db_session, world, recording_dispatcher):
        task = CreateTaskUseCase(db_session, recording_dispatcher).execute(
            actor=_actor(world["owner"]), title="Blog post draft", status="NEEDS_APPROVAL",
            approval_notify_user_ids=[world["u2"].id], client_id=world["client"].id,
            due_date=datetime(2024, 2, 1, 17, 0),
        )
        assert task.agency_id == world["agency"].id
        assert task.created_by_id == world["owner"].id
        [note] = recording_dispatcher.sent
        assert note.kind == TASK_APPROVAL_REQUESTED
        assert note.user_ids == (world["u2"].id,)

    def test_create_as_done_is_not_a_completion(self, db_session, world, recording_dispatcher):
        CreateTaskUseCase(db_session, recording_dispatcher).execute(
            actor=_actor(world["owner"]), title="Already handled", status="DONE",
            client_id=world["client"].id,
        )
        assert recording_dispatcher.sent == []
