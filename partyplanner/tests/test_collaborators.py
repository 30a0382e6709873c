"""
Tests for collaborator invitations and the per-event collaborator limit.
"""
import pytest

from partyplanner.core.errors import ConflictError, LimitExceededError, NotFoundError, ValidationError
from partyplanner.features.collaborators.service import (
    accept_invitation,
    assign_roles,
    count_collaborators,
    get_collaborator,
    invite_collaborator,
    list_collaborators,
    remove_collaborator,
    set_custom_role,
)
from partyplanner.features.entitlements.service import get_active_subscription
from partyplanner.features.events.service import create_event
from partyplanner.features.permissions.custom_roles import create_role
from partyplanner.features.permissions.service import get_user_permissions, permissions_for
from partyplanner.features.subscriptions.service import create_subscription, upgrade_to_plan
from partyplanner.models.role import SystemRole


@pytest.fixture
def trial_event(new_user):
    owner = new_user(trial=True)
    return create_event(owner, "Communion")


def test_invite_defaults_to_supervisor(trial_event, new_user):
    member = new_user()
    collaborator = invite_collaborator(trial_event, trial_event.user_id, member)
    assert collaborator.roles == (SystemRole.SUPERVISOR,)
    assert collaborator.is_pending
    assert collaborator.invited_at is not None

    accepted = accept_invitation(trial_event.event_id, member)
    assert accepted.is_accepted
    again = accept_invitation(trial_event.event_id, member)
    assert again.accepted_at == accepted.accepted_at


def test_collaborator_limit(trial_event, new_user):
    invite_collaborator(trial_event, trial_event.user_id, new_user())
    with pytest.raises(LimitExceededError) as exc:
        invite_collaborator(trial_event, trial_event.user_id, new_user())
    assert exc.value.details["limit"] == 1
    assert count_collaborators(trial_event.event_id) == 1


def test_collaborator_limit_follows_upgrade(trial_event, new_user):
    invite_collaborator(trial_event, trial_event.user_id, new_user())
    sub = get_active_subscription(trial_event.user_id)
    upgrade_to_plan(sub.id, "pro")
    invite_collaborator(trial_event, trial_event.user_id, new_user())
    assert count_collaborators(trial_event.event_id) == 2


def test_invite_validation(trial_event, new_user):
    with pytest.raises(ValidationError):
        invite_collaborator(trial_event, trial_event.user_id, trial_event.user_id)
    with pytest.raises(ValidationError):
        invite_collaborator(trial_event, trial_event.user_id, new_user(), roles=["owner"])
    with pytest.raises(ValidationError):
        invite_collaborator(trial_event, trial_event.user_id, new_user(), roles=["chef"])


def test_invite_twice_conflicts(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    event = create_event(owner, "Gala")
    member = new_user()
    invite_collaborator(event, owner, member)
    with pytest.raises(ConflictError):
        invite_collaborator(event, owner, member)


def test_custom_role_from_other_event_rejected(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    first = create_event(owner, "A")
    second = create_event(owner, "B")
    role = create_role(first.event_id, owner, "Accueil", ["guests.view"])
    with pytest.raises(ValidationError) as exc:
        invite_collaborator(second, owner, new_user(), custom_role_id=role.role_id)
    assert exc.value.field == "custom_role_id"


def test_assign_roles_replaces(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    event = create_event(owner, "Gala")
    member = new_user()
    invite_collaborator(event, owner, member, roles=["planner"])
    accept_invitation(event.event_id, member)

    assign_roles(event.event_id, member, ["accountant", "accountant", "reporter"])
    collaborator = get_collaborator(event.event_id, member)
    assert collaborator.roles == (SystemRole.ACCOUNTANT, SystemRole.REPORTER)
    assert get_user_permissions(member, event) == (
        permissions_for(SystemRole.ACCOUNTANT) | permissions_for(SystemRole.REPORTER)
    )
    with pytest.raises(ValidationError):
        assign_roles(event.event_id, member, [])


def test_remove_collaborator(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    event = create_event(owner, "Gala")
    member = new_user()
    invite_collaborator(event, owner, member)
    remove_collaborator(event.event_id, member)
    assert get_collaborator(event.event_id, member) is None
    assert list_collaborators(event.event_id) == []
    with pytest.raises(NotFoundError):
        remove_collaborator(event.event_id, member)
    with pytest.raises(NotFoundError):
        set_custom_role(event.event_id, member, None)
