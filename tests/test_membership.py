"""
Tests for the membership directory.

Covers resolution, the create / join / approve / reject lifecycle, role
checks on the roster and the compensating writes of multi-step
operations. Two clients on the same store are modelled as two
directories with their own identity sessions.
"""

import asyncio
import re

import pytest

from src.membership import (
    AlreadyMemberError,
    FamilyNotFoundError,
    InsufficientPermissionsError,
    JoinRequestExistsError,
    JoinRequestNotPendingError,
    LastAdminError,
    MemberNotFoundError,
    MembershipStorageError,
    MembershipValidationError,
    NotAuthenticatedError,
    PartialFailureError,
)
from src.models import (
    FamilyMembership,
    JoinRequestStatus,
    Member,
    MemberPatch,
    MemberRole,
    NoFamily,
    NotificationEventType,
    PendingApproval,
    Unresolved,
)
from tests.conftest import ANA, BRUNO, CARLA


async def found_silva(directory, session):
    await session.sign_in(ANA)
    return await directory.create_family("Silva", "Ana")


async def request_as(make_directory, identity, family_id, name):
    other, other_session = make_directory()
    await other_session.sign_in(identity)
    request = await other.request_to_join(family_id, name)
    return other, request


async def seat_bruno(directory, session, make_directory):
    """Ana founds Silva, Bruno asks to join, Ana approves."""
    family = await found_silva(directory, session)
    bruno, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
    await directory.refresh()
    await directory.approve_request(request.id)
    await bruno.refresh()
    return family, bruno


class TestResolution:
    """Tests for computing the membership state."""

    @pytest.mark.asyncio
    async def test_unresolved_without_identity(self, directory):
        """Test that nobody signed in means Unresolved."""
        state = await directory.resolve()

        assert isinstance(state, Unresolved)
        assert directory.has_family is None
        assert directory.family is None
        assert directory.members == ()

    @pytest.mark.asyncio
    async def test_no_family_after_sign_in(self, directory, session):
        """Test that a fresh identity resolves to NoFamily on sign-in."""
        await session.sign_in(ANA)

        assert isinstance(directory.state, NoFamily)
        assert directory.has_family is False
        assert directory.loading is False

    @pytest.mark.asyncio
    async def test_sign_out_returns_to_unresolved(self, directory, session):
        """Test that signing out drops the membership."""
        await found_silva(directory, session)
        await session.sign_out()

        assert isinstance(directory.state, Unresolved)
        assert directory.current_member is None
        assert directory.is_admin is False

    @pytest.mark.asyncio
    async def test_storage_failure_degrades_to_no_family(self, directory, session, store):
        """Test that a failing lookup resolves to NoFamily instead of raising."""
        await found_silva(directory, session)
        store.fail("select", "family_members")

        state = await directory.refresh()

        assert isinstance(state, NoFamily)
        assert directory.loading is False

    @pytest.mark.asyncio
    async def test_overtaken_resolve_keeps_loading(self, directory, session):
        """Test that a resolve overtaken by a newer one doesn't clear loading."""
        gates = {ANA.id: asyncio.Event(), BRUNO.id: asyncio.Event()}

        async def gated_lookup(identity):
            await gates[identity.id].wait()
            return NoFamily()

        directory._lookup = gated_lookup
        first = asyncio.create_task(session.sign_in(ANA))
        await asyncio.sleep(0)
        second = asyncio.create_task(session.sign_in(BRUNO))
        await asyncio.sleep(0)

        gates[ANA.id].set()
        await first
        assert directory.loading is True
        assert isinstance(directory.state, Unresolved)

        gates[BRUNO.id].set()
        await second
        assert directory.loading is False
        assert isinstance(directory.state, NoFamily)

    @pytest.mark.asyncio
    async def test_earliest_of_several_memberships_wins(self, directory, session, store):
        """Test that only one member row is ever reflected."""
        await session.sign_in(ANA)
        alpha = await store.insert("families", {"name": "Alpha", "created_by": "someone"})
        beta = await store.insert("families", {"name": "Beta", "created_by": "someone"})
        await store.insert("family_members", {
            "family_id": beta["id"], "user_id": ANA.id, "name": "Ana",
            "created_at": "2024-02-01T00:00:00+00:00",
        })
        await store.insert("family_members", {
            "family_id": alpha["id"], "user_id": ANA.id, "name": "Ana",
            "created_at": "2024-01-01T00:00:00+00:00",
        })

        state = await directory.refresh()

        assert isinstance(state, FamilyMembership)
        assert state.family.id == alpha["id"]
        assert [m.user_id for m in state.roster] == [ANA.id]

    @pytest.mark.asyncio
    async def test_pending_request_resolves_to_pending_approval(self, directory, session, make_directory):
        """Test that a pending request survives a fresh client."""
        family = await found_silva(directory, session)
        _, request = await request_as(make_directory, BRUNO, family.id, "Bruno")

        fresh, fresh_session = make_directory()
        await fresh_session.sign_in(BRUNO)

        assert isinstance(fresh.state, PendingApproval)
        assert fresh.pending_request.id == request.id
        assert fresh.has_family is None

    @pytest.mark.asyncio
    async def test_listeners_receive_every_state(self, directory, session):
        """Test that subscribers see each new state."""
        seen = []

        async def listener(state):
            seen.append(state.kind)

        unsubscribe = directory.subscribe(listener)
        await found_silva(directory, session)
        unsubscribe()
        await session.sign_out()

        assert seen[0] == "no_family"
        assert seen[-1] == "member"
        assert "unresolved" not in seen


class TestCreateFamily:
    """Tests for founding a family."""

    @pytest.mark.asyncio
    async def test_create_family(self, directory, session, notifier):
        """Test createFamily("Silva", "Ana") end to end."""
        family = await found_silva(directory, session)

        assert re.fullmatch(r"[A-Z0-9]{8}", family.invite_code)
        assert directory.has_family is True
        assert directory.family.name == "Silva"
        assert directory.current_member.name == "Ana"
        assert directory.current_member.role == MemberRole.ADMIN
        assert directory.is_admin is True
        assert [m.name for m in directory.members] == ["Ana"]
        assert directory.join_requests == ()
        assert any(
            n.event_type == NotificationEventType.FAMILY_CREATED for n in notifier.history
        )

    @pytest.mark.asyncio
    async def test_requires_identity(self, directory, notifier):
        """Test that founding without a session fails visibly."""
        with pytest.raises(NotAuthenticatedError):
            await directory.create_family("Silva", "Ana")

        assert notifier.failures[-1].details["error_code"] == "NOT_AUTHENTICATED"

    @pytest.mark.asyncio
    async def test_rejects_blank_names(self, directory, session):
        """Test that both names are required."""
        await session.sign_in(ANA)

        with pytest.raises(MembershipValidationError):
            await directory.create_family("   ", "Ana")
        with pytest.raises(MembershipValidationError):
            await directory.create_family("Silva", "")

    @pytest.mark.asyncio
    async def test_rejects_existing_member(self, directory, session, store):
        """Test that a member can't found a second family."""
        await found_silva(directory, session)

        with pytest.raises(AlreadyMemberError):
            await directory.create_family("Costa", "Ana")

        assert len(store.rows("families")) == 1

    @pytest.mark.asyncio
    async def test_family_deleted_when_founder_insert_fails(self, directory, session, store):
        """Test the compensating delete after a failed second write."""
        await session.sign_in(ANA)
        store.fail("insert", "family_members")

        with pytest.raises(PartialFailureError) as exc_info:
            await directory.create_family("Silva", "Ana")

        assert exc_info.value.compensated is True
        assert exc_info.value.operation == "create_family"
        assert store.rows("families") == []
        assert isinstance(directory.state, NoFamily)

    @pytest.mark.asyncio
    async def test_failed_compensation_is_reported(self, directory, session, store):
        """Test that a failing undo still raises PartialFailureError."""
        await session.sign_in(ANA)
        store.fail("insert", "family_members")
        store.fail("delete", "families")

        with pytest.raises(PartialFailureError) as exc_info:
            await directory.create_family("Silva", "Ana")

        assert exc_info.value.compensated is False
        assert len(store.rows("families")) == 1


class TestSearchFamily:
    """Tests for invite code lookup."""

    @pytest.mark.asyncio
    async def test_code_is_trimmed_and_upper_cased(self, directory, session):
        """Test that user-typed codes still match."""
        family = await found_silva(directory, session)

        preview = await directory.search_family_by_code(f"  {family.invite_code.lower()} ")

        assert preview.id == family.id
        assert preview.name == "Silva"
        assert preview.invite_code == family.invite_code

    @pytest.mark.asyncio
    async def test_unknown_code(self, directory, session):
        """Test that an unknown code returns None."""
        await found_silva(directory, session)

        assert await directory.search_family_by_code("NOPE1234") is None

    @pytest.mark.asyncio
    async def test_empty_code(self, directory):
        """Test that an empty code is a validation error."""
        with pytest.raises(MembershipValidationError):
            await directory.search_family_by_code("   ")


class TestJoinRequests:
    """Tests for the requester side of joining."""

    @pytest.mark.asyncio
    async def test_request_to_join(self, directory, session, make_directory, store):
        """Test that a request moves the requester to PendingApproval."""
        family = await found_silva(directory, session)

        bruno, request = await request_as(make_directory, BRUNO, family.id, "Bruno")

        assert isinstance(bruno.state, PendingApproval)
        assert request.status == JoinRequestStatus.PENDING
        assert request.user_email == BRUNO.email
        assert store.rows("join_requests")[0]["user_id"] == BRUNO.id

    @pytest.mark.asyncio
    async def test_only_one_outstanding_request(self, directory, session, make_directory, store):
        """Test that a second request is refused."""
        family = await found_silva(directory, session)
        bruno, _ = await request_as(make_directory, BRUNO, family.id, "Bruno")

        with pytest.raises(JoinRequestExistsError):
            await bruno.request_to_join(family.id, "Bruno")

        assert len(store.rows("join_requests")) == 1

    @pytest.mark.asyncio
    async def test_member_cannot_request(self, directory, session):
        """Test that a seated identity can't ask to join."""
        family = await found_silva(directory, session)

        with pytest.raises(AlreadyMemberError):
            await directory.request_to_join(family.id, "Ana")

    @pytest.mark.asyncio
    async def test_unknown_family(self, make_directory):
        """Test that requests need an existing family."""
        bruno, bruno_session = make_directory()
        await bruno_session.sign_in(BRUNO)

        with pytest.raises(FamilyNotFoundError):
            await bruno.request_to_join("missing-family", "Bruno")

        assert isinstance(bruno.state, NoFamily)

    @pytest.mark.asyncio
    async def test_blank_display_name(self, directory, session, make_directory):
        """Test that the requester must give a name."""
        family = await found_silva(directory, session)
        bruno, bruno_session = make_directory()
        await bruno_session.sign_in(BRUNO)

        with pytest.raises(MembershipValidationError):
            await bruno.request_to_join(family.id, "  ")

    @pytest.mark.asyncio
    async def test_cancel_request(self, directory, session, make_directory, store, notifier):
        """Test that cancelling deletes the request."""
        family = await found_silva(directory, session)
        bruno, _ = await request_as(make_directory, BRUNO, family.id, "Bruno")

        await bruno.cancel_request()

        assert isinstance(bruno.state, NoFamily)
        assert store.rows("join_requests") == []
        assert notifier.history[-1].event_type == NotificationEventType.JOIN_REQUEST_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_without_request_is_noop(self, make_directory, notifier):
        """Test that cancelling nothing does nothing."""
        bruno, bruno_session = make_directory()
        await bruno_session.sign_in(BRUNO)
        before = len(notifier.history)

        await bruno.cancel_request()

        assert isinstance(bruno.state, NoFamily)
        assert len(notifier.history) == before

    @pytest.mark.asyncio
    async def test_cancel_after_approval(self, directory, session, make_directory):
        """Test that an already approved request can't be cancelled."""
        family = await found_silva(directory, session)
        bruno, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await directory.refresh()
        await directory.approve_request(request.id)

        with pytest.raises(JoinRequestNotPendingError):
            await bruno.cancel_request()

        assert isinstance(bruno.state, FamilyMembership)


class TestApproval:
    """Tests for the admin side of joining."""

    @pytest.mark.asyncio
    async def test_join_and_approve(self, directory, session, make_directory, store):
        """Test the full join/approve scenario."""
        family = await found_silva(directory, session)
        bruno, bruno_session = make_directory()
        await bruno_session.sign_in(BRUNO)
        preview = await bruno.search_family_by_code(family.invite_code)
        request = await bruno.request_to_join(preview.id, "Bruno")

        await directory.refresh()
        assert [r.id for r in directory.join_requests] == [request.id]

        member = await directory.approve_request(request.id)

        assert member.user_id == BRUNO.id
        assert member.role == MemberRole.MEMBER
        assert member.email == BRUNO.email
        assert directory.join_requests == ()
        assert [m.name for m in directory.members] == ["Ana", "Bruno"]

        row = store.rows("join_requests")[0]
        assert row["status"] == "approved"
        assert row["responded_by"] == ANA.id
        assert row["responded_at"] is not None

        await bruno.refresh()
        assert isinstance(bruno.state, FamilyMembership)
        assert bruno.family.id == family.id
        assert bruno.is_admin is False
        assert bruno.join_requests == ()

    @pytest.mark.asyncio
    async def test_concurrent_double_approve(self, directory, session, make_directory, store):
        """Test that approving twice at once seats the requester once."""
        family = await found_silva(directory, session)
        _, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await directory.refresh()

        results = await asyncio.gather(
            directory.approve_request(request.id),
            directory.approve_request(request.id),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, Member)]) == 1
        assert len([r for r in results if isinstance(r, JoinRequestNotPendingError)]) == 1
        seats = [r for r in store.rows("family_members") if r["user_id"] == BRUNO.id]
        assert len(seats) == 1

    @pytest.mark.asyncio
    async def test_two_admins_approve_at_once(self, directory, session, make_directory, store, notifier):
        """Test that two admin clients approving together seat the requester once."""
        family, bruno = await seat_bruno(directory, session, make_directory)
        await directory.update_member(bruno.current_member.id, {"role": "admin"})
        _, request = await request_as(make_directory, CARLA, family.id, "Carla")
        await directory.refresh()
        await bruno.refresh()

        results = await asyncio.gather(
            directory.approve_request(request.id),
            bruno.approve_request(request.id),
            return_exceptions=True,
        )

        assert not [r for r in results if isinstance(r, PartialFailureError)]
        assert [r for r in results if isinstance(r, Member)]
        seats = [r for r in store.rows("family_members") if r["user_id"] == CARLA.id]
        assert len(seats) == 1
        statuses = [r["status"] for r in store.rows("join_requests") if r["user_id"] == CARLA.id]
        assert statuses == ["approved"]
        await directory.refresh()
        assert directory.join_requests == ()
        assert not [n for n in notifier.failures if n.details.get("error_code") == "PARTIAL_FAILURE"]

    @pytest.mark.asyncio
    async def test_seat_taken_during_insert_counts_as_approved(self, directory, session, make_directory, store, monkeypatch):
        """Test that a duplicate seat from another client completes the approval."""
        family = await found_silva(directory, session)
        _, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await directory.refresh()
        original_insert = store.insert

        async def seated_elsewhere(table, row):
            if table == "family_members":
                await original_insert(table, dict(row))
            return await original_insert(table, row)

        monkeypatch.setattr(store, "insert", seated_elsewhere)

        member = await directory.approve_request(request.id)

        assert member.user_id == BRUNO.id
        seats = [r for r in store.rows("family_members") if r["user_id"] == BRUNO.id]
        assert len(seats) == 1
        assert store.rows("join_requests")[0]["status"] == "approved"
        assert [m.name for m in directory.members] == ["Ana", "Bruno"]

    @pytest.mark.asyncio
    async def test_approve_existing_seat_does_not_duplicate(self, directory, session, make_directory, store):
        """Test that a requester who is already seated isn't seated again."""
        family = await found_silva(directory, session)
        _, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await store.insert("family_members", {
            "family_id": family.id, "user_id": BRUNO.id, "name": "Bruno",
        })
        await directory.refresh()

        member = await directory.approve_request(request.id)

        assert member.user_id == BRUNO.id
        seats = [r for r in store.rows("family_members") if r["user_id"] == BRUNO.id]
        assert len(seats) == 1

    @pytest.mark.asyncio
    async def test_request_reverted_when_member_insert_fails(self, directory, session, make_directory, store, notifier):
        """Test that a failed seat puts the request back to pending."""
        family = await found_silva(directory, session)
        _, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await directory.refresh()
        store.fail("insert", "family_members")

        with pytest.raises(PartialFailureError) as exc_info:
            await directory.approve_request(request.id)

        assert exc_info.value.compensated is True
        row = store.rows("join_requests")[0]
        assert row["status"] == "pending"
        assert row["responded_by"] is None
        assert not [r for r in store.rows("family_members") if r["user_id"] == BRUNO.id]
        assert notifier.failures[-1].details["error_code"] == "PARTIAL_FAILURE"

    @pytest.mark.asyncio
    async def test_member_cannot_approve(self, directory, session, make_directory):
        """Test that approval is admin only."""
        family, bruno = await seat_bruno(directory, session, make_directory)
        _, request = await request_as(make_directory, CARLA, family.id, "Carla")

        with pytest.raises(InsufficientPermissionsError):
            await bruno.approve_request(request.id)

    @pytest.mark.asyncio
    async def test_reject_request(self, directory, session, make_directory, store):
        """Test that rejecting marks the request and frees the requester."""
        family = await found_silva(directory, session)
        bruno, request = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await directory.refresh()

        await directory.reject_request(request.id)

        assert directory.join_requests == ()
        assert store.rows("join_requests")[0]["status"] == "rejected"
        await bruno.refresh()
        assert isinstance(bruno.state, NoFamily)

    @pytest.mark.asyncio
    async def test_failed_reject_restores_request(self, directory, session, make_directory, store):
        """Test that the optimistic removal is undone on failure."""
        family = await found_silva(directory, session)
        _, first = await request_as(make_directory, BRUNO, family.id, "Bruno")
        await request_as(make_directory, CARLA, family.id, "Carla")
        await directory.refresh()
        before = directory.join_requests
        store.fail("update", "join_requests")

        with pytest.raises(MembershipStorageError):
            await directory.reject_request(first.id)

        assert directory.join_requests == before
        assert store.rows("join_requests")[0]["status"] == "pending"


class TestRoster:
    """Tests for adding, updating and removing members."""

    @pytest.mark.asyncio
    async def test_add_pet(self, directory, session, notifier):
        """Test that placeholder members get a synthetic user id."""
        await found_silva(directory, session)

        rex = await directory.add_member("Rex", role="pet")

        assert rex.role == MemberRole.PET
        assert rex.user_id not in (ANA.id, BRUNO.id)
        assert [m.name for m in directory.members] == ["Ana", "Rex"]
        assert notifier.history[-1].event_type == NotificationEventType.MEMBER_ADDED

    @pytest.mark.asyncio
    async def test_member_cannot_add(self, directory, session, make_directory):
        """Test that only admins edit the roster."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        with pytest.raises(InsufficientPermissionsError):
            await bruno.add_member("Rex", role="pet")

    @pytest.mark.asyncio
    async def test_admin_updates_anyone(self, directory, session, make_directory):
        """Test that admins may rename other members."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        updated = await directory.update_member(bruno.current_member.id, {"name": "Bruno S."})

        assert updated.name == "Bruno S."
        assert "Bruno S." in [m.name for m in directory.members]

    @pytest.mark.asyncio
    async def test_member_updates_own_details(self, directory, session, make_directory):
        """Test that a member may edit their own non-role fields."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        updated = await bruno.update_member(bruno.current_member.id, MemberPatch(phone="555-0101"))

        assert updated.phone == "555-0101"
        assert bruno.current_member.phone == "555-0101"

    @pytest.mark.asyncio
    async def test_member_cannot_change_own_role(self, directory, session, make_directory):
        """Test that role changes are admin only."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        with pytest.raises(InsufficientPermissionsError):
            await bruno.update_member(bruno.current_member.id, {"role": "admin"})

    @pytest.mark.asyncio
    async def test_member_cannot_edit_others(self, directory, session, make_directory):
        """Test that members only edit themselves."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        with pytest.raises(InsufficientPermissionsError):
            await bruno.update_member(directory.current_member.id, {"name": "Not Ana"})

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_demoted(self, directory, session):
        """Test that a family keeps at least one admin."""
        await found_silva(directory, session)

        with pytest.raises(LastAdminError):
            await directory.update_member(directory.current_member.id, {"role": "member"})

    @pytest.mark.asyncio
    async def test_hand_over_admin(self, directory, session, make_directory):
        """Test that an admin can step down once someone else is admin."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        await directory.update_member(bruno.current_member.id, {"role": "admin"})
        await directory.update_member(directory.current_member.id, {"role": "member"})

        assert directory.is_admin is False
        assert directory.join_requests == ()
        await bruno.refresh()
        assert bruno.is_admin is True

    @pytest.mark.asyncio
    async def test_unknown_patch_field(self, directory, session):
        """Test that patches can't touch other columns."""
        await found_silva(directory, session)

        with pytest.raises(MembershipValidationError):
            await directory.update_member(directory.current_member.id, {"family_id": "other"})

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_removed(self, directory, session):
        """Test that removing the only admin is refused."""
        await found_silva(directory, session)

        with pytest.raises(LastAdminError):
            await directory.remove_member(directory.current_member.id)

    @pytest.mark.asyncio
    async def test_remove_member(self, directory, session, make_directory, notifier):
        """Test that a removed member falls back to NoFamily."""
        _, bruno = await seat_bruno(directory, session, make_directory)

        await directory.remove_member(bruno.current_member.id)

        assert [m.name for m in directory.members] == ["Ana"]
        assert notifier.history[-1].event_type == NotificationEventType.MEMBER_REMOVED
        await bruno.refresh()
        assert isinstance(bruno.state, NoFamily)

    @pytest.mark.asyncio
    async def test_remove_unknown_member(self, directory, session):
        """Test that only roster members can be removed."""
        await found_silva(directory, session)

        with pytest.raises(MemberNotFoundError):
            await directory.remove_member("nobody")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
