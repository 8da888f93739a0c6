"""Job status graph, timestamp columns and role authorization.

    pending → accepted → en_route → arrived → in_progress → completed
       └─────────┴──────────┴─────────┴──→ cancelled
                                 in_progress, completed → disputed

cancelled and disputed are absorbing. The table is total: every (from, to)
pair not listed is rejected.
"""

from src.fw_common.actor import Actor
from src.fw_common.enums import JobStatus, Role
from src.fw_common.errors import ForbiddenError, InvalidTransitionError, NotAssignedError
from src.fw_job.domain.models import Job

S = JobStatus

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.EN_ROUTE, S.CANCELLED}),
    S.EN_ROUTE: frozenset({S.ARRIVED, S.CANCELLED}),
    S.ARRIVED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.DISPUTED}),
    S.COMPLETED: frozenset({S.DISPUTED}),
    S.CANCELLED: frozenset(),
    S.DISPUTED: frozenset(),
}

# Column stamped with NOW() when a job enters the status
TIMESTAMP_FIELDS: dict[JobStatus, str] = {
    S.ACCEPTED: "accepted_at",
    S.EN_ROUTE: "en_route_at",
    S.ARRIVED: "arrived_at",
    S.IN_PROGRESS: "started_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
    S.DISPUTED: "disputed_at",
}

FUNDI_TARGETS = frozenset({S.ACCEPTED, S.EN_ROUTE, S.ARRIVED, S.IN_PROGRESS, S.COMPLETED})
CUSTOMER_TARGETS = frozenset({S.COMPLETED, S.CANCELLED})


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


def assert_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status.value, to_status.value)


def authorize(actor: Actor, job: Job, to_status: JobStatus) -> None:
    """Role rules. Admin and system actors are not role-restricted.

    Raises:
        ForbiddenError: the role may not request this status, or a customer
            acting on someone else's job.
        NotAssignedError: a fundi acting on a job assigned to someone else.
    """
    if actor.is_privileged:
        return

    if actor.role is Role.FUNDI:
        if to_status not in FUNDI_TARGETS:
            raise ForbiddenError(f"Fundi cannot set status {to_status.value}")
        # accepted is how a fundi becomes assigned
        if to_status is not S.ACCEPTED and job.fundi_id != actor.user_id:
            raise NotAssignedError(job.id)
        return

    if actor.role is Role.CUSTOMER:
        if to_status not in CUSTOMER_TARGETS:
            raise ForbiddenError(f"Customer cannot set status {to_status.value}")
        if job.customer_id != actor.user_id:
            raise ForbiddenError("Job belongs to another customer")
        return

    raise ForbiddenError()


def check_transition(actor: Actor, job: Job, to_status: JobStatus) -> JobStatus:
    """Table first, then roles. Returns the current status."""
    from_status = JobStatus(job.status)
    assert_transition(from_status, to_status)
    authorize(actor, job, to_status)
    return from_status
