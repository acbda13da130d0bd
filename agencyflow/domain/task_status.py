"""Task status values and the status-change plan (which fields change, who gets notified)"""
from dataclasses import dataclass
from typing import Iterable


TODO = "TODO"
IN_PROGRESS = "IN_PROGRESS"
REVIEW = "REVIEW"
NEEDS_APPROVAL = "NEEDS_APPROVAL"
DONE = "DONE"

TASK_STATUSES = (TODO, IN_PROGRESS, REVIEW, NEEDS_APPROVAL, DONE)

PROOF_TYPES = ("image", "video", "url")


class TaskStatusValidationError(ValueError):
    pass


def validate_status(status: str) -> str:
    if status not in TASK_STATUSES:
        raise TaskStatusValidationError(
            f"Invalid task status {status!r}, expected one of {', '.join(TASK_STATUSES)}"
        )
    return status


def normalize_user_ids(user_ids: Iterable[int] | None) -> list[int]:
    """De-duplicate user ids keeping first-seen order."""
    out: list[int] = []
    for uid in user_ids or ():
        if isinstance(uid, bool) or not isinstance(uid, int) or uid < 1:
            raise TaskStatusValidationError(f"Invalid user id in approval list: {uid!r}")
        if uid not in out:
            out.append(uid)
    return out


def validate_proof(proof: list[dict] | None) -> list[dict] | None:
    """Attachment descriptors: {"type": image|video|url, "value": http(s) URL, "name"?}"""
    if proof is None:
        return None
    out = []
    for item in proof:
        if not isinstance(item, dict):
            raise TaskStatusValidationError("Invalid attachments: each attachment must be an object.")
        kind = item.get("type")
        value = str(item.get("value") or "").strip()
        if kind not in PROOF_TYPES:
            raise TaskStatusValidationError(f"Invalid attachment type {kind!r}")
        if not value.lower().startswith(("http://", "https://")):
            raise TaskStatusValidationError("Invalid attachments: each attachment must have a valid URL.")
        entry = {"type": kind, "value": value}
        if item.get("name"):
            entry["name"] = str(item["name"])
        out.append(entry)
    return out


@dataclass(frozen=True)
class StatusChange:
    old_status: str
    new_status: str
    approval_notify_user_ids: list[int] | None  # value to persist on the task
    approval_recipients: tuple[int, ...]         # "approval requested" fan-out
    completion_recipients: tuple[int, ...]       # "task completed" fan-out

    @property
    def completed(self) -> bool:
        return self.new_status == DONE and self.old_status != DONE


def plan_status_change(
    *,
    old_status: str,
    old_approval_user_ids: Iterable[int] | None,
    new_status: str,
    requested_approval_user_ids: Iterable[int] | None,
    actor_user_id: int,
    creator_id: int | None,
    active_client_member_ids: Iterable[int] = (),
) -> StatusChange:
    """
    Decide the persisted approval set and the notification recipients for a
    status change.

    - NEEDS_APPROVAL + non-empty requested set: persist it, notify exactly those users
    - NEEDS_APPROVAL + empty requested set: keep what is stored, notify nobody
    - any other status: clear the set
    - entering DONE: notify active client members, the creator and the
      previously stored approval users, never the actor
    """
    validate_status(new_status)
    previous = normalize_user_ids(old_approval_user_ids)
    requested = normalize_user_ids(requested_approval_user_ids)

    approval_recipients: tuple[int, ...] = ()
    if new_status == NEEDS_APPROVAL:
        if requested:
            approval_ids: list[int] | None = requested
            approval_recipients = tuple(requested)
        else:
            approval_ids = previous or None
    else:
        approval_ids = None

    completion_recipients: tuple[int, ...] = ()
    if new_status == DONE and old_status != DONE:
        candidates: list[int] = list(active_client_member_ids)
        if creator_id is not None:
            candidates.append(creator_id)
        candidates.extend(previous)
        seen: list[int] = []
        for uid in candidates:
            if uid != actor_user_id and uid not in seen:
                seen.append(uid)
        completion_recipients = tuple(seen)

    return StatusChange(
        old_status=old_status,
        new_status=new_status,
        approval_notify_user_ids=approval_ids,
        approval_recipients=approval_recipients,
        completion_recipients=completion_recipients,
    )
