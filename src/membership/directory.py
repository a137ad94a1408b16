"""
Membership Directory

Answers "which family, if any, does the signed-in identity belong to"
and mediates every transition between the membership states:

    Unresolved ──resolve()──> NoFamily | PendingApproval | FamilyMembership

    NoFamily ──create_family()──> FamilyMembership (admin)
    NoFamily ──request_to_join()──> PendingApproval
    PendingApproval ──cancel_request()──> NoFamily
    PendingApproval ──(admin approves)──> FamilyMembership (member)

DESIGN DECISIONS:
1. Lookup failures during resolution degrade to NoFamily. A user is never
   stuck on a loading screen because the store hiccuped.
2. Role checks happen here, before any write. We don't assume the remote
   store has an access policy.
3. Multi-step operations (found family + seat admin, approve request +
   seat member) undo their first write if the second one fails.
4. approve/reject are serialized, so approving the same request twice
   can never seat the requester twice.
"""

import asyncio
import functools
from typing import Awaitable, Callable, Optional, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from src.membership.errors import (
    AlreadyMemberError,
    FamilyNotFoundError,
    InsufficientPermissionsError,
    JoinRequestExistsError,
    JoinRequestNotFoundError,
    JoinRequestNotPendingError,
    LastAdminError,
    MemberNotFoundError,
    MembershipError,
    MembershipStorageError,
    MembershipValidationError,
    NotAuthenticatedError,
    PartialFailureError,
)
from src.models.family import (
    Family,
    FamilyDraft,
    FamilyMembership,
    FamilyPreview,
    JoinRequest,
    JoinRequestStatus,
    Member,
    MemberDraft,
    MemberPatch,
    MemberRole,
    MembershipState,
    NoFamily,
    PendingApproval,
    Unresolved,
    utcnow,
)
from src.models.notification import NotificationBuilder, NotificationEventType
from src.notifications import Notifier
from src.services.identity import Identity, IdentitySession
from src.services.storage import (
    DuplicateError,
    Filter,
    NotFoundError,
    Order,
    Repositories,
    StorageError,
)


logger = structlog.get_logger(__name__)

MembershipListener = Callable[[MembershipState], Awaitable[None]]


def reports_failure(action: str):
    """
    Turn every failure of a lifecycle operation into a MembershipError and
    a destructive notification, then re-raise it.
    """
    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self: "MembershipDirectory", *args, **kwargs):
            try:
                return await method(self, *args, **kwargs)
            except MembershipError as e:
                await self._report(action, e)
                raise
            except StorageError as e:
                error = MembershipStorageError(str(e))
                await self._report(action, error)
                raise error from e
            except ValidationError as e:
                error = MembershipValidationError(str(e))
                await self._report(action, error)
                raise error from e
        return wrapper
    return decorator


class MembershipDirectory:
    """
    Membership state of the current identity plus lifecycle operations.

    The directory re-resolves automatically whenever the identity session
    changes, and after every operation that changes which family the
    identity belongs to.
    """

    def __init__(
        self,
        repositories: Repositories,
        session: IdentitySession,
        notifier: Notifier,
    ):
        self._repos = repositories
        self._session = session
        self._notifier = notifier
        self._state: MembershipState = Unresolved()
        self._loading = False
        self._generation = 0
        self._lock = asyncio.Lock()
        self._listeners: list[MembershipListener] = []
        self._unsubscribe_session = session.subscribe(self._on_identity_changed)

    # =========================================================================
    # Read-only projections
    # =========================================================================

    @property
    def state(self) -> MembershipState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def identity(self) -> Optional[Identity]:
        return self._session.current_identity

    @property
    def has_family(self) -> Optional[bool]:
        """
        True for members, False for NoFamily, None while unresolved or
        pending approval (the "limbo" routing relies on).
        """
        if isinstance(self._state, FamilyMembership):
            return True
        if isinstance(self._state, NoFamily):
            return False
        return None

    @property
    def family(self) -> Optional[Family]:
        return self._state.family if isinstance(self._state, FamilyMembership) else None

    @property
    def members(self) -> tuple[Member, ...]:
        return self._state.roster if isinstance(self._state, FamilyMembership) else ()

    @property
    def join_requests(self) -> tuple[JoinRequest, ...]:
        return self._state.join_requests if isinstance(self._state, FamilyMembership) else ()

    @property
    def pending_request(self) -> Optional[JoinRequest]:
        return self._state.request if isinstance(self._state, PendingApproval) else None

    @property
    def current_member(self) -> Optional[Member]:
        return self._state.member if isinstance(self._state, FamilyMembership) else None

    @property
    def is_admin(self) -> bool:
        member = self.current_member
        return member is not None and member.is_admin

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, listener: MembershipListener) -> Callable[[], None]:
        """Register a listener for state changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop following the identity session."""
        self._unsubscribe_session()

    async def _on_identity_changed(self, identity: Optional[Identity]) -> None:
        await self.resolve()

    async def _set_state(self, state: MembershipState) -> None:
        self._state = state
        for listener in list(self._listeners):
            await listener(state)

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(self) -> MembershipState:
        """
        Recompute the membership state of the current identity.

        Storage failures are logged and resolve to NoFamily.
        """
        self._generation += 1
        generation = self._generation
        identity = self._session.current_identity
        if identity is None:
            self._loading = False
            await self._set_state(Unresolved())
            return self._state

        self._loading = True
        try:
            state = await self._lookup(identity)
        except StorageError as e:
            logger.warning(
                "membership_resolution_failed",
                user_id=identity.id,
                error=str(e),
            )
            state = NoFamily()
        finally:
            if generation == self._generation:
                self._loading = False

        if generation != self._generation:
            # A newer resolve started while we were looking; its result wins
            return self._state

        await self._set_state(state)
        logger.info("membership_resolved", user_id=identity.id, status=state.kind)
        return state

    async def refresh(self) -> MembershipState:
        return await self.resolve()

    async def _lookup(self, identity: Identity) -> MembershipState:
        seats = await self._repos.members.find_all(
            [Filter.eq("user_id", identity.id)],
            Order(column="created_at"),
        )
        if seats:
            if len(seats) > 1:
                logger.warning(
                    "multiple_memberships",
                    user_id=identity.id,
                    family_ids=[s.family_id for s in seats],
                )
            member = seats[0]
            family = await self._repos.families.get(member.family_id)
            if family is None:
                raise NotFoundError(f"Family not found: {member.family_id}")

            roster = await self._repos.members.find_all(
                [Filter.eq("family_id", family.id)],
                Order(column="created_at"),
            )
            requests: list[JoinRequest] = []
            if member.is_admin:
                requests = await self._repos.join_requests.find_all(
                    [
                        Filter.eq("family_id", family.id),
                        Filter.eq("status", JoinRequestStatus.PENDING),
                    ],
                    Order(column="created_at"),
                )
            return FamilyMembership(
                family=family,
                member=member,
                roster=tuple(roster),
                join_requests=tuple(requests),
            )

        pending = await self._repos.join_requests.find_one(
            [
                Filter.eq("user_id", identity.id),
                Filter.eq("status", JoinRequestStatus.PENDING),
            ],
            Order(column="created_at"),
        )
        if pending is not None:
            return PendingApproval(request=pending)
        return NoFamily()

    # =========================================================================
    # Guards
    # =========================================================================

    def _require_identity(self) -> Identity:
        identity = self._session.current_identity
        if identity is None:
            raise NotAuthenticatedError("User not authenticated")
        return identity

    def _require_membership(self) -> FamilyMembership:
        self._require_identity()
        if not isinstance(self._state, FamilyMembership):
            raise InsufficientPermissionsError(
                "Not a member of any family",
                required_role=MemberRole.MEMBER.value,
            )
        return self._state

    def _require_admin(self) -> FamilyMembership:
        membership = self._require_membership()
        if not membership.member.is_admin:
            raise InsufficientPermissionsError(
                "Only family admins can do this",
                required_role=MemberRole.ADMIN.value,
                user_role=membership.role.value,
            )
        return membership

    async def _ensure_not_seated(self, identity: Identity) -> None:
        """Refuse when the identity already has a seat or a pending request."""
        if isinstance(self._state, FamilyMembership):
            raise AlreadyMemberError("Already a member of a family")
        if isinstance(self._state, PendingApproval):
            raise JoinRequestExistsError("A join request is already pending")

        seat = await self._repos.members.find_one([Filter.eq("user_id", identity.id)])
        if seat is not None:
            raise AlreadyMemberError(
                "Already a member of a family",
                context={"family_id": seat.family_id},
            )
        pending = await self._repos.join_requests.find_one(
            [
                Filter.eq("user_id", identity.id),
                Filter.eq("status", JoinRequestStatus.PENDING),
            ]
        )
        if pending is not None:
            raise JoinRequestExistsError(
                "A join request is already pending",
                context={"request_id": pending.id},
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _report(self, action: str, error: MembershipError) -> None:
        await self._notifier.notify(
            NotificationBuilder.membership_failed(
                action=action,
                error=error.message,
                error_code=error.error_code,
            )
        )

    async def _announce(
        self,
        event_type: NotificationEventType,
        title: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        await self._notifier.notify(
            NotificationBuilder.membership_changed(
                event_type=event_type,
                title=title,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
            )
        )

    async def _compensate(self, operation: str, undo: Awaitable) -> bool:
        """Run an undo write; report whether it succeeded."""
        try:
            await undo
            logger.info("compensation_applied", operation=operation)
            return True
        except StorageError as e:
            logger.error("compensation_failed", operation=operation, error=str(e))
            return False

    async def _replace_membership(self, family_id: str, **changes) -> None:
        """Apply changes to the current membership if it's still the same family."""
        current = self._state
        if isinstance(current, FamilyMembership) and current.family.id == family_id:
            await self._set_state(current.model_copy(update=changes))

    def _find_member(self, membership: FamilyMembership, member_id: str) -> Member:
        member = next((m for m in membership.roster if m.id == member_id), None)
        if member is None:
            raise MemberNotFoundError(
                f"Member not found: {member_id}",
                context={"member_id": member_id},
            )
        return member

    # =========================================================================
    # Founding and discovery
    # =========================================================================

    @reports_failure("create the family")
    async def create_family(self, family_name: str, founder_name: str) -> Family:
        """
        Found a family with the current identity as its first admin.

        If seating the founder fails, the family row is deleted again and
        PartialFailureError is raised.
        """
        identity = self._require_identity()
        draft = FamilyDraft(family_name=family_name, founder_name=founder_name)
        await self._ensure_not_seated(identity)

        family = await self._repos.families.create(
            {"name": draft.family_name, "created_by": identity.id}
        )
        try:
            await self._repos.members.create(
                {
                    "family_id": family.id,
                    "user_id": identity.id,
                    "name": draft.founder_name,
                    "role": MemberRole.ADMIN,
                    "email": identity.email or None,
                }
            )
        except StorageError as e:
            compensated = await self._compensate(
                "create_family", self._repos.families.delete(family.id)
            )
            raise PartialFailureError(
                f"Family was created but the founder could not be added: {e}",
                operation="create_family",
                compensated=compensated,
            ) from e

        await self._announce(
            NotificationEventType.FAMILY_CREATED,
            title="Family created",
            entity_type="family",
            entity_id=family.id,
            description=f"{family.name} ({family.invite_code})",
        )
        await self.resolve()
        return family

    @reports_failure("find the family")
    async def search_family_by_code(self, invite_code: str) -> Optional[FamilyPreview]:
        """Exact, case-insensitive lookup of a family by invite code."""
        code = (invite_code or "").strip().upper()
        if not code:
            raise MembershipValidationError("Invite code is required")

        family = await self._repos.families.find_one([Filter.eq("invite_code", code)])
        if family is None:
            return None
        return FamilyPreview(id=family.id, name=family.name, invite_code=family.invite_code)

    # =========================================================================
    # Join requests - requester side
    # =========================================================================

    @reports_failure("send the join request")
    async def request_to_join(self, family_id: str, display_name: str) -> JoinRequest:
        """Ask to join a family. At most one request may be pending per identity."""
        identity = self._require_identity()
        name = (display_name or "").strip()
        if not name:
            raise MembershipValidationError("Your name is required")
        await self._ensure_not_seated(identity)

        family = await self._repos.families.get(family_id)
        if family is None:
            raise FamilyNotFoundError(
                f"Family not found: {family_id}",
                context={"family_id": family_id},
            )

        request = await self._repos.join_requests.create(
            {
                "family_id": family.id,
                "user_id": identity.id,
                "user_name": name,
                "user_email": identity.email,
            }
        )
        await self._set_state(PendingApproval(request=request))
        await self._announce(
            NotificationEventType.JOIN_REQUESTED,
            title="Request sent",
            entity_type="join_request",
            entity_id=request.id,
            description=f"Waiting for an admin of {family.name} to approve.",
        )
        return request

    @reports_failure("cancel the join request")
    async def cancel_request(self) -> None:
        """Withdraw the caller's pending request. No-op when nothing is pending."""
        self._require_identity()
        if not isinstance(self._state, PendingApproval):
            return

        request_id = self._state.request.id
        current = await self._repos.join_requests.get(request_id)
        if current is not None and not current.is_pending:
            await self.resolve()
            raise JoinRequestNotPendingError(
                f"Join request was already {current.status.value}",
                request_id=request_id,
                status=current.status.value,
            )
        if current is not None:
            await self._repos.join_requests.delete(request_id)

        await self._set_state(NoFamily())
        await self._announce(
            NotificationEventType.JOIN_REQUEST_CANCELLED,
            title="Request cancelled",
            entity_type="join_request",
            entity_id=request_id,
        )

    # =========================================================================
    # Join requests - admin side
    # =========================================================================

    @reports_failure("approve the request")
    async def approve_request(self, request_id: str) -> Member:
        """
        Approve a pending request and seat the requester as a member.

        The request is re-read from the store first, so a request that is
        no longer pending is refused instead of seating someone twice. If
        another admin's client seats the requester first, the unique key
        on (family_id, user_id) rejects our insert and that seat is used.
        """
        async with self._lock:
            membership = self._require_admin()
            identity = self._require_identity()
            family_id = membership.family.id

            request = await self._repos.join_requests.get(request_id)
            if request is None or request.family_id != family_id:
                raise JoinRequestNotFoundError(
                    f"Join request not found: {request_id}",
                    context={"request_id": request_id},
                )
            if not request.is_pending:
                raise JoinRequestNotPendingError(
                    f"Join request was already {request.status.value}",
                    request_id=request_id,
                    status=request.status.value,
                )

            seat = await self._repos.members.find_one([Filter.eq("user_id", request.user_id)])
            if seat is not None and seat.family_id != family_id:
                raise AlreadyMemberError(
                    f"{request.user_name} already belongs to another family",
                    context={"user_id": request.user_id},
                )

            await self._repos.join_requests.update(
                request_id,
                {
                    "status": JoinRequestStatus.APPROVED,
                    "responded_at": utcnow(),
                    "responded_by": identity.id,
                },
            )

            if seat is None:
                try:
                    seat = await self._repos.members.create(
                        {
                            "family_id": family_id,
                            "user_id": request.user_id,
                            "name": request.user_name,
                            "role": MemberRole.MEMBER,
                            "email": request.user_email or None,
                        }
                    )
                except StorageError as e:
                    if isinstance(e, DuplicateError):
                        # Another admin's client seated them after our check
                        seat = await self._repos.members.find_one(
                            [
                                Filter.eq("family_id", family_id),
                                Filter.eq("user_id", request.user_id),
                            ]
                        )
                    if seat is not None:
                        logger.info(
                            "requester_seated_concurrently",
                            request_id=request_id,
                            member_id=seat.id,
                        )
                    else:
                        compensated = await self._compensate(
                            "approve_request",
                            self._repos.join_requests.update(
                                request_id,
                                {
                                    "status": JoinRequestStatus.PENDING,
                                    "responded_at": None,
                                    "responded_by": None,
                                },
                            ),
                        )
                        raise PartialFailureError(
                            f"Request was approved but the member could not be added: {e}",
                            operation="approve_request",
                            compensated=compensated,
                        ) from e
            else:
                logger.info(
                    "requester_already_seated",
                    request_id=request_id,
                    member_id=seat.id,
                )

            await self._announce(
                NotificationEventType.JOIN_REQUEST_APPROVED,
                title="Request approved",
                entity_type="join_request",
                entity_id=request_id,
                description=f"{request.user_name} joined the family.",
            )
            await self.resolve()
            return seat

    @reports_failure("reject the request")
    async def reject_request(self, request_id: str) -> None:
        """
        Reject a pending request.

        The request leaves the pending list immediately; if the write
        fails it is put back where it was.
        """
        async with self._lock:
            membership = self._require_admin()
            identity = self._require_identity()
            family_id = membership.family.id

            position = next(
                (i for i, r in enumerate(membership.join_requests) if r.id == request_id),
                None,
            )
            if position is None:
                raise JoinRequestNotFoundError(
                    f"Join request not found: {request_id}",
                    context={"request_id": request_id},
                )
            request = membership.join_requests[position]

            await self._replace_membership(
                family_id,
                join_requests=tuple(r for r in membership.join_requests if r.id != request_id),
            )

            try:
                current = await self._repos.join_requests.get(request_id)
                if current is not None and not current.is_pending:
                    # Someone else already answered it; it stays off the list
                    raise JoinRequestNotPendingError(
                        f"Join request was already {current.status.value}",
                        request_id=request_id,
                        status=current.status.value,
                    )
                await self._repos.join_requests.update(
                    request_id,
                    {
                        "status": JoinRequestStatus.REJECTED,
                        "responded_at": utcnow(),
                        "responded_by": identity.id,
                    },
                )
            except StorageError:
                self._restore_join_request(family_id, request, position)
                raise

            await self._announce(
                NotificationEventType.JOIN_REQUEST_REJECTED,
                title="Request rejected",
                entity_type="join_request",
                entity_id=request_id,
                description=request.user_name,
            )

    def _restore_join_request(self, family_id: str, request: JoinRequest, position: int) -> None:
        current = self._state
        if not isinstance(current, FamilyMembership) or current.family.id != family_id:
            return
        if any(r.id == request.id for r in current.join_requests):
            return
        requests = list(current.join_requests)
        requests.insert(min(position, len(requests)), request)
        # Listeners already saw the removal; the raised error tells the caller
        self._state = current.model_copy(update={"join_requests": tuple(requests)})

    # =========================================================================
    # Roster
    # =========================================================================

    @reports_failure("add the member")
    async def add_member(
        self,
        name: str,
        role: Union[MemberRole, str] = MemberRole.MEMBER,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Member:
        """
        Add a member who doesn't sign in (a pet, a small child).

        They get a synthetic user id. The roster is updated from the
        stored row, after the write succeeds.
        """
        membership = self._require_admin()
        draft = MemberDraft(name=name, role=role, email=email, phone=phone)
        family_id = membership.family.id

        member = await self._repos.members.create(
            {
                "family_id": family_id,
                "user_id": str(uuid4()),
                "name": draft.name,
                "role": draft.role,
                "email": draft.email,
                "phone": draft.phone,
            }
        )
        roster = self.members if self.family and self.family.id == family_id else membership.roster
        await self._replace_membership(family_id, roster=roster + (member,))
        await self._announce(
            NotificationEventType.MEMBER_ADDED,
            title="Member added",
            entity_type="member",
            entity_id=member.id,
            description=member.name,
        )
        return member

    @reports_failure("update the member")
    async def update_member(self, member_id: str, patch: Union[MemberPatch, dict]) -> Member:
        """
        Update a member.

        Admins may edit anyone. Members may edit their own details but not
        their role. The last admin can't be demoted.
        """
        membership = self._require_membership()
        identity = self._require_identity()
        if isinstance(patch, dict):
            patch = MemberPatch.model_validate(patch)
        changes = patch.changes()

        target = self._find_member(membership, member_id)
        if not changes:
            return target

        is_self = target.user_id == identity.id
        role_change = "role" in changes and changes["role"] != target.role.value
        if not membership.member.is_admin and (not is_self or role_change):
            raise InsufficientPermissionsError(
                "Only family admins can change other members or roles",
                required_role=MemberRole.ADMIN.value,
                user_role=membership.role.value,
            )
        if role_change and target.is_admin and membership.admin_count <= 1:
            raise LastAdminError(
                "The family needs at least one admin",
                context={"member_id": member_id},
            )

        updated = await self._repos.members.update(member_id, changes)

        current = self._state
        if isinstance(current, FamilyMembership) and current.family.id == updated.family_id:
            roster = tuple(updated if m.id == member_id else m for m in current.roster)
            own = updated if current.member.id == member_id else current.member
            await self._replace_membership(updated.family_id, roster=roster, member=own)
            if own is updated and role_change:
                # Demoting or promoting ourselves changes what we may see
                await self.resolve()

        await self._announce(
            NotificationEventType.MEMBER_UPDATED,
            title="Member updated",
            entity_type="member",
            entity_id=member_id,
            description=updated.name,
        )
        return updated

    @reports_failure("remove the member")
    async def remove_member(self, member_id: str) -> None:
        """Remove a member from the roster. The last admin can't be removed."""
        membership = self._require_admin()
        identity = self._require_identity()
        target = self._find_member(membership, member_id)
        if target.is_admin and membership.admin_count <= 1:
            raise LastAdminError(
                "The family needs at least one admin",
                context={"member_id": member_id},
            )

        await self._repos.members.delete(member_id)

        if target.user_id == identity.id:
            await self.resolve()
        else:
            current = self._state
            if isinstance(current, FamilyMembership):
                await self._replace_membership(
                    current.family.id,
                    roster=tuple(m for m in current.roster if m.id != member_id),
                )

        await self._announce(
            NotificationEventType.MEMBER_REMOVED,
            title="Member removed",
            entity_type="member",
            entity_id=member_id,
            description=target.name,
        )
