"""
Family Membership Models

These models describe who belongs to which household and how an identity
gets there:

1. Family      - the household (tenant) every other resource is scoped to
2. Member      - an identity's (or a placeholder's) seat in a family, with a role
3. JoinRequest - an identity asking to be let into a family

DESIGN DECISION: The membership status of the signed-in identity is an
explicit tagged variant (MembershipState) rather than a boolean-or-null.
"Member but also pending" simply cannot be constructed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class MemberRole(str, Enum):
    """
    Role of a member inside a family.

    Only ADMIN may approve/reject join requests and edit the roster.
    PET (and other placeholder members) never sign in.
    """
    ADMIN = "admin"
    MEMBER = "member"
    PET = "pet"


class JoinRequestStatus(str, Enum):
    """Lifecycle of a join request. Only PENDING is actionable."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# =============================================================================
# ENTITIES
# =============================================================================

class Family(BaseModel):
    """A household. The founder becomes its first admin."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1, max_length=120)
    invite_code: str = Field(
        ...,
        min_length=1,
        description="Unique code other identities use to find this family"
    )
    created_by: str = Field(..., description="Identity id of the founder")
    created_at: datetime = Field(default_factory=utcnow)


class FamilyPreview(BaseModel):
    """What an outsider learns about a family from its invite code."""

    id: str
    name: str
    invite_code: str


class Member(BaseModel):
    """
    A seat in a family.

    For human members user_id is the identity id. Placeholder members
    (pets, small children) get a synthetic unique user_id since they
    never have a session.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    user_id: str
    name: str = Field(..., min_length=1, max_length=120)
    role: MemberRole = MemberRole.MEMBER
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN


class JoinRequest(BaseModel):
    """An identity asking to join a family."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    user_id: str
    user_name: str
    user_email: str = ""
    status: JoinRequestStatus = JoinRequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    responded_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == JoinRequestStatus.PENDING


# =============================================================================
# DRAFTS - what callers hand in before the store assigns ids
# =============================================================================

class FamilyDraft(BaseModel):
    """Input for founding a family. Both names are required."""
    model_config = ConfigDict(str_strip_whitespace=True)

    family_name: str = Field(..., min_length=1, max_length=120)
    founder_name: str = Field(..., min_length=1, max_length=120)


class MemberDraft(BaseModel):
    """Input for adding a placeholder member to the roster."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    role: MemberRole = MemberRole.MEMBER
    email: Optional[str] = None
    phone: Optional[str] = None


class MemberPatch(BaseModel):
    """Partial update of a member. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    role: Optional[MemberRole] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

    def changes(self) -> dict:
        """Only the fields the caller actually set. name and role can't be cleared."""
        changes = self.model_dump(mode="json", exclude_unset=True)
        for required in ("name", "role"):
            if changes.get(required, "") is None:
                del changes[required]
        return changes


# =============================================================================
# MEMBERSHIP STATE - tagged variant
# =============================================================================

class Unresolved(BaseModel):
    """Nothing known yet: still loading, or nobody is signed in."""
    kind: Literal["unresolved"] = "unresolved"


class NoFamily(BaseModel):
    """Signed in, not a member anywhere, nothing pending."""
    kind: Literal["no_family"] = "no_family"


class PendingApproval(BaseModel):
    """Signed in and waiting for an admin to act on a join request."""
    kind: Literal["pending_approval"] = "pending_approval"
    request: JoinRequest


class FamilyMembership(BaseModel):
    """
    Signed in and seated in a family.

    join_requests is only populated for admins; everybody else sees an
    empty tuple.
    """
    kind: Literal["member"] = "member"
    family: Family
    member: Member
    roster: tuple[Member, ...] = ()
    join_requests: tuple[JoinRequest, ...] = ()

    @property
    def role(self) -> MemberRole:
        return self.member.role

    @property
    def admin_count(self) -> int:
        return sum(1 for m in self.roster if m.role == MemberRole.ADMIN)


MembershipState = Annotated[
    Union[Unresolved, NoFamily, PendingApproval, FamilyMembership],
    Field(discriminator="kind"),
]
