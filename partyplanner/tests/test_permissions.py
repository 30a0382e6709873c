"""
Tests for collaborator permission resolution and custom roles.
"""
import pytest

from partyplanner.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from partyplanner.features.collaborators.service import (
    accept_invitation,
    invite_collaborator,
    set_custom_role,
)
from partyplanner.features.events.service import create_event
from partyplanner.features.permissions.custom_roles import (
    create_role,
    delete_role,
    get_role,
    list_roles_for_event,
    update_role,
)
from partyplanner.features.permissions.service import (
    ALL_PERMISSIONS,
    SYSTEM_ROLE_PERMISSIONS,
    get_user_permissions,
    permissions_for,
    permissions_grouped_by_module,
    require_permission,
    seed_permissions,
    system_role_can,
    system_role_can_in_module,
    user_can,
    user_can_in_module,
)
from partyplanner.features.subscriptions.service import create_subscription
from partyplanner.models.role import SystemRole


@pytest.fixture
def pro_event(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    return create_event(owner, "Mariage de Awa")


def _collaborator(event, new_user, roles=None, custom_role_id=None, accept=True):
    member = new_user()
    invite_collaborator(event, event.user_id, member, roles=roles, custom_role_id=custom_role_id)
    if accept:
        accept_invitation(event.event_id, member)
    return member


def test_catalog_size():
    assert len(ALL_PERMISSIONS) == 29
    assert "guests.send_invitations" in ALL_PERMISSIONS


def test_legacy_aliases():
    assert permissions_for(SystemRole.EDITOR) == permissions_for(SystemRole.COORDINATOR)
    assert permissions_for(SystemRole.VIEWER) == permissions_for(SystemRole.SUPERVISOR)
    assert SystemRole.EDITOR.canonical is SystemRole.COORDINATOR
    assert SystemRole.OWNER.canonical is SystemRole.OWNER


def test_system_role_table():
    assert permissions_for(SystemRole.OWNER) == ALL_PERMISSIONS
    assert system_role_can(SystemRole.REPORTER, "guests.export")
    assert system_role_can(SystemRole.REPORTER, "budget.export")
    assert not system_role_can(SystemRole.REPORTER, "guests.create")
    assert all(p.endswith(".view") for p in permissions_for(SystemRole.SUPERVISOR))
    assert permissions_for(SystemRole.PLANNER) >= {"events.edit", "tasks.assign"}
    assert system_role_can_in_module(SystemRole.PHOTOGRAPHER, "photos")
    assert not system_role_can_in_module(SystemRole.PHOTOGRAPHER, "budget")
    # Every non-legacy role is in the table
    assert set(SYSTEM_ROLE_PERMISSIONS) == {r for r in SystemRole if not r.is_legacy}


def test_owner_override_without_collaborator_row(pro_event):
    assert user_can(pro_event.user_id, pro_event, "collaborators.remove")
    assert get_user_permissions(pro_event.user_id, pro_event) == ALL_PERMISSIONS


def test_stranger_has_nothing(pro_event, new_user):
    assert get_user_permissions(new_user(), pro_event) == frozenset()


def test_pending_invitation_denies_all(pro_event, new_user):
    member = _collaborator(pro_event, new_user, roles=["coordinator"], accept=False)
    assert not user_can(member, pro_event, "events.view")


def test_permission_union(pro_event, new_user):
    member = _collaborator(pro_event, new_user, roles=["photographer", "accountant"])
    perms = get_user_permissions(member, pro_event)
    assert perms == permissions_for(SystemRole.PHOTOGRAPHER) | permissions_for(SystemRole.ACCOUNTANT)
    assert user_can(member, pro_event, "photos.upload")
    assert user_can(member, pro_event, "budget.edit")
    assert not user_can(member, pro_event, "guests.delete")
    assert user_can_in_module(member, pro_event, "budget")
    assert not user_can_in_module(member, pro_event, "tasks")


def test_legacy_role_stored_value(pro_event, new_user):
    member = _collaborator(pro_event, new_user, roles=["viewer"])
    assert get_user_permissions(member, pro_event) == permissions_for(SystemRole.SUPERVISOR)


def test_custom_role_is_exclusive(pro_event, new_user):
    role = create_role(pro_event.event_id, pro_event.user_id, "Accueil", ["guests.view", "guests.checkin"])
    member = _collaborator(pro_event, new_user, roles=["coordinator", "planner"], custom_role_id=role.role_id)

    assert get_user_permissions(member, pro_event) == frozenset({"guests.view", "guests.checkin"})
    assert not user_can(member, pro_event, "tasks.edit")

    set_custom_role(pro_event.event_id, member, None)
    assert user_can(member, pro_event, "tasks.edit")


def test_require_permission_raises(pro_event, new_user):
    with pytest.raises(PermissionError) as exc:
        require_permission(new_user(), pro_event, "events.view")
    assert exc.value.status_code == 403


def test_seed_permissions_idempotent():
    assert seed_permissions() == 0
    grouped = permissions_grouped_by_module()
    assert set(grouped) == {"events", "guests", "tasks", "budget", "photos", "collaborators"}
    assert len(grouped["guests"]) == 8
    assert list(permissions_grouped_by_module("photos")) == ["photos"]


def test_create_role_validation(pro_event):
    event_id, owner = pro_event.event_id, pro_event.user_id
    with pytest.raises(ValidationError) as exc:
        create_role(event_id, owner, "  ", ["guests.view"])
    assert exc.value.field == "name"

    with pytest.raises(ValidationError) as exc:
        create_role(event_id, owner, "Vide", [])
    assert exc.value.field == "permissions"

    with pytest.raises(ValidationError) as exc:
        create_role(event_id, owner, "Inconnu", ["guests.fly"])
    assert exc.value.details["unknown"] == ["guests.fly"]

    create_role(event_id, owner, "Accueil", ["guests.view"])
    with pytest.raises(ValidationError) as exc:
        create_role(event_id, owner, "accueil", ["guests.view"])
    assert exc.value.field == "name"


def test_role_names_are_scoped_per_event(new_user):
    owner = new_user()
    create_subscription(owner, "pro")
    first = create_event(owner, "A")
    second = create_event(owner, "B")
    create_role(first.event_id, owner, "Accueil", ["guests.view"])
    assert create_role(second.event_id, owner, "Accueil", ["guests.view"]).event_id == second.event_id


def test_update_and_delete_role(pro_event, new_user):
    role = create_role(pro_event.event_id, pro_event.user_id, "Photos", ["photos.view"], color="blue")
    updated = update_role(role.role_id, permissions=["photos.view", "photos.upload"], name="Photographes")
    assert updated.name == "Photographes"
    assert updated.permissions == frozenset({"photos.view", "photos.upload"})
    assert updated.color == "blue"

    member = _collaborator(pro_event, new_user, custom_role_id=role.role_id)
    assert user_can(member, pro_event, "photos.upload")
    with pytest.raises(ConflictError):
        delete_role(role.role_id)

    set_custom_role(pro_event.event_id, member, None)
    delete_role(role.role_id)
    assert get_role(role.role_id) is None
    with pytest.raises(NotFoundError):
        delete_role(role.role_id)


def test_list_roles_for_event(pro_event):
    create_role(pro_event.event_id, pro_event.user_id, "Accueil", ["guests.view"])
    roles = list_roles_for_event(pro_event.event_id)
    system = [r["role"] for r in roles if r["is_system"] and "role" in r]
    assert "owner" not in system
    assert "editor" not in system
    assert "coordinator" in system
    custom = [r for r in roles if "role_id" in r]
    assert [r["name"] for r in custom] == ["Accueil"]
