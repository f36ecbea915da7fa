"""
MOC Workflow Service
Closed enumerations for the request aggregate.

Stored in the database as their string values; the ORM columns stay plain
strings so rows remain readable from SQL.
"""

from enum import Enum


class RequestType(str, Enum):
    STANDARD_EMOC = "standard_emoc"
    BYPASS_EMOC = "bypass_emoc"
    OMOC = "omoc"
    DMOC = "dmoc"

    @property
    def has_stage_pipeline(self) -> bool:
        """DMOC runs a single department approval; the others walk the stages."""
        return self is not RequestType.DMOC


CONTROL_NUMBER_PREFIX = {
    RequestType.STANDARD_EMOC: "EMOC",
    RequestType.BYPASS_EMOC: "BYPASS",
    RequestType.OMOC: "OMOC",
    RequestType.DMOC: "DMOC",
}


class MocStatus(str, Enum):
    """Lifecycle status, independent of the stage pipeline."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ACTIVE = "active"
    INACTIVE = "inactive"
    APPROVED = "approved"
    FOR_RESTORATION = "for_restoration"
    RESTORED = "restored"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (MocStatus.CLOSED, MocStatus.CANCELLED)


class MocStage(str, Enum):
    """Ordered workflow phase. Only ever moves forward by one."""
    INITIATION = "initiation"
    VALIDATION = "validation"
    EVALUATION = "evaluation"
    FINAL_APPROVAL = "final_approval"
    PRE_IMPLEMENTATION = "pre_implementation"
    IMPLEMENTATION = "implementation"
    RESTORATION_OR_CLOSEOUT = "restoration_or_closeout"

    @property
    def position(self) -> int:
        return STAGE_SEQUENCE.index(self) + 1

    @property
    def next_stage(self):
        idx = STAGE_SEQUENCE.index(self)
        if idx + 1 >= len(STAGE_SEQUENCE):
            return None
        return STAGE_SEQUENCE[idx + 1]


STAGE_SEQUENCE = tuple(MocStage)


class RiskLevel(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class RoleKey(str, Enum):
    """Role identifiers used by approval levels, slots, tasks and notifications."""
    ORIGINATOR = "Originator"
    SUPERVISOR = "Supervisor"
    DEPARTMENT_MANAGER = "DepartmentManager"
    DIVISION_MANAGER = "DivisionManager"
    AVP = "AVP"
    SUPER_USER = "SuperUser"

    @property
    def precedence(self) -> int:
        return ROLE_PRECEDENCE[self]

    @classmethod
    def parse(cls, value):
        """Return the RoleKey for *value* or None when it is not a known role."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


# Escalation order: lower number acts earlier in a default chain.
ROLE_PRECEDENCE = {
    RoleKey.ORIGINATOR: 0,
    RoleKey.SUPERVISOR: 1,
    RoleKey.DEPARTMENT_MANAGER: 2,
    RoleKey.DIVISION_MANAGER: 3,
    RoleKey.AVP: 4,
    RoleKey.SUPER_USER: 5,
}

DEFAULT_APPROVAL_CHAIN = (
    RoleKey.SUPERVISOR,
    RoleKey.DEPARTMENT_MANAGER,
    RoleKey.DIVISION_MANAGER,
    RoleKey.AVP,
    RoleKey.SUPER_USER,
)


class TaskStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskType(str, Enum):
    EVALUATION = "evaluation"
    DOCUMENTATION = "documentation"
    APPROVAL = "approval"
    IMPLEMENTATION = "implementation"
    RESTORATION = "restoration"
    GENERAL = "general"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    DISMISSED = "dismissed"


class WorkflowEventType(str, Enum):
    STAGE_ENTERED = "stage_entered"
    SLOT_AWAITING_ACTION = "slot_awaiting_action"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_CLOSED = "request_closed"
    REQUEST_CANCELLED = "request_cancelled"
    SLOT_COMPLETED = "slot_completed"
