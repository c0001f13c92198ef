"""
Sign-off state machine.

The only place that decides which (status, role, action) triples are legal,
which fields an actor may write, and what each transition stamps on the record.
Both the in-app session path and the magic-link gateway go through here.

Transitions:

    Draft      owner       save      -> Draft
    Draft      owner       submit    -> Submitted
    Submitted  supervisor  save      -> Submitted
    Submitted  supervisor  sign_off  -> COMPLETE
    Submitted  supervisor  decline   -> Draft

A signed-off record has no transitions. It is only re-opened through an
approved edit request (see app.services.edit_requests).

MSF responses are not transitions either: each respondent's answers are merged
under their own key of the MSF record and the status is left alone.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from app.core.errors import IllegalTransition, InvalidRequest
from app.models.base import utcnow
from app.models.evidence import EvidenceRecord
from app.models.magic_link import MagicLink
from app.models.user import User
from app.services.evidence_store import MSF_RESPONSES_KEY, merge_payload
from portfolio_shared.schemas.common import EvidenceStatus


class Action(str, Enum):
    SAVE = "save"
    SUBMIT = "submit"
    SIGN_OFF = "sign_off"
    DECLINE = "decline"


class Role(str, Enum):
    OWNER = "owner"
    SUPERVISOR = "supervisor"


TRANSITIONS: dict[tuple[EvidenceStatus, Role, Action], EvidenceStatus] = {
    (EvidenceStatus.DRAFT, Role.OWNER, Action.SAVE): EvidenceStatus.DRAFT,
    (EvidenceStatus.DRAFT, Role.OWNER, Action.SUBMIT): EvidenceStatus.SUBMITTED,
    (EvidenceStatus.SUBMITTED, Role.SUPERVISOR, Action.SAVE): EvidenceStatus.SUBMITTED,
    (EvidenceStatus.SUBMITTED, Role.SUPERVISOR, Action.SIGN_OFF): EvidenceStatus.SIGNED_OFF,
    (EvidenceStatus.SUBMITTED, Role.SUPERVISOR, Action.DECLINE): EvidenceStatus.DRAFT,
}


@dataclass(frozen=True)
class Actor:
    """Whoever is acting: a signed-in user, or the holder of a magic link.

    ``token_evidence_id`` is only ever set from a link that has just been
    validated, so it stands for "a currently-valid token scoped to this record".
    """

    user_id: Optional[uuid.UUID] = None
    credential_id: Optional[str] = None
    email: Optional[str] = None
    token_evidence_id: Optional[uuid.UUID] = None

    @classmethod
    def for_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, credential_id=user.gmc_number, email=user.email)

    @classmethod
    def for_link(cls, link: MagicLink, credential_id: Optional[str] = None) -> "Actor":
        return cls(
            credential_id=credential_id or link.recipient_gmc,
            email=link.recipient_email,
            token_evidence_id=link.evidence_id,
        )


@dataclass(frozen=True)
class SupervisorIdentity:
    name: Optional[str] = None
    email: Optional[str] = None
    gmc: Optional[str] = None


def same_email(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def roles_of(record: EvidenceRecord, actor: Actor) -> set[Role]:
    roles: set[Role] = set()
    if actor.user_id is not None and actor.user_id == record.owner_id:
        roles.add(Role.OWNER)
    if actor.token_evidence_id is not None:
        # Once a supervisor is pending, a link only acts as that supervisor.
        if actor.token_evidence_id == record.id and (
            not record.supervisor_email or same_email(actor.email, record.supervisor_email)
        ):
            roles.add(Role.SUPERVISOR)
    elif actor.credential_id and record.supervisor_gmc and actor.credential_id == record.supervisor_gmc:
        roles.add(Role.SUPERVISOR)
    return roles


def resolve_transition(
    record: EvidenceRecord, actor: Actor, action: Action
) -> tuple[Role, EvidenceStatus]:
    """Return (role, target status) or raise IllegalTransition."""
    current = EvidenceStatus(record.status)
    for role in sorted(roles_of(record, actor), key=lambda r: r.value):
        target = TRANSITIONS.get((current, role, action))
        if target is not None:
            return role, target
    raise IllegalTransition(f"{action.value} not allowed from {current.value}")


def is_writable(record: EvidenceRecord, actor: Actor, field: Optional[str] = None) -> bool:
    """Field-locking predicate. ``field=None`` asks whether anything is writable."""
    if field == MSF_RESPONSES_KEY:
        return False
    roles = roles_of(record, actor)
    status = EvidenceStatus(record.status)
    if status == EvidenceStatus.DRAFT:
        if Role.OWNER not in roles:
            return False
        if record.unlocked_fields and field is not None:
            return field in record.unlocked_fields
        return True
    if status == EvidenceStatus.SUBMITTED:
        return Role.SUPERVISOR in roles
    return False


def assert_writable(record: EvidenceRecord, actor: Actor, fields: Iterable[str]) -> None:
    if not is_writable(record, actor):
        raise IllegalTransition("record is locked for this actor")
    locked = sorted(f for f in fields if not is_writable(record, actor, f))
    if locked:
        raise IllegalTransition("locked fields: " + ", ".join(locked))


def plan_transition(
    record: EvidenceRecord,
    actor: Actor,
    action: Action,
    *,
    patch: Optional[dict[str, Any]] = None,
    identity: Optional[SupervisorIdentity] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Column values for applying ``action`` to ``record``.

    Pure: nothing is written. Callers feed the result to a compare-and-set so a
    concurrent write re-runs the whole check against fresh state.
    """
    resolve_transition(record, actor, action)
    now = now or utcnow()
    patch = patch or {}
    if patch:
        assert_writable(record, actor, patch.keys())

    values: dict[str, Any] = {}
    if patch:
        values["data"] = merge_payload(record.data, patch)

    if action == Action.SUBMIT:
        if identity is None or not identity.email:
            raise InvalidRequest("A supervisor email is required to submit for sign-off.")
        values.update(
            status=EvidenceStatus.SUBMITTED.value,
            supervisor_name=identity.name,
            supervisor_email=identity.email,
            supervisor_gmc=identity.gmc,
            supervisor_confirmed=False,
            submitted_at=now,
        )
    elif action == Action.SIGN_OFF:
        identity = identity or SupervisorIdentity()
        if record.supervisor_gmc and identity.gmc and identity.gmc != record.supervisor_gmc:
            raise InvalidRequest("That GMC number does not match the supervisor this form was sent to.")
        name = identity.name or record.supervisor_name
        values.update(
            status=EvidenceStatus.SIGNED_OFF.value,
            supervisor_name=name,
            supervisor_email=identity.email or record.supervisor_email,
            supervisor_gmc=identity.gmc or record.supervisor_gmc,
            supervisor_confirmed=True,
            signed_off_at=record.signed_off_at or now,
            last_signed_off_at=now,
            signed_off_by=name,
            unlocked_fields=[],
        )
    elif action == Action.DECLINE:
        values.update(status=EvidenceStatus.DRAFT.value, supervisor_confirmed=False)

    return values


def plan_amendment(record: EvidenceRecord, fields: list[str]) -> dict[str, Any]:
    """Re-open named payload fields of a signed-off record for its owner.

    Not a state-machine transition: the record returns to Draft with
    ``unlocked_fields`` set, and ``signed_off_at`` is left as it was.
    """
    if record.status != EvidenceStatus.SIGNED_OFF.value:
        raise IllegalTransition("only signed-off records can be amended")
    if not fields:
        raise InvalidRequest("Name at least one field to unlock.")
    return {
        "status": EvidenceStatus.DRAFT.value,
        "unlocked_fields": sorted(set(fields)),
        "supervisor_confirmed": False,
    }


def plan_msf_response(
    record: EvidenceRecord,
    respondent_email: str,
    response: dict[str, Any],
    *,
    complete: bool,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Merge one respondent's answers into an MSF record under their email.

    Allowed while the MSF is still collecting (Draft or Submitted). A completed
    response is final. Other respondents' entries and the status are untouched.
    """
    if record.status == EvidenceStatus.SIGNED_OFF.value:
        raise IllegalTransition("this MSF is closed")
    responses = (record.data or {}).get(MSF_RESPONSES_KEY) or {}
    if (responses.get(respondent_email) or {}).get("completedAt"):
        raise IllegalTransition("response already submitted")

    entry = {k: v for k, v in response.items() if k != "completedAt"}
    if complete:
        entry["completedAt"] = (now or utcnow()).isoformat()
    return {"data": merge_payload(record.data, {MSF_RESPONSES_KEY: {respondent_email: entry}})}
