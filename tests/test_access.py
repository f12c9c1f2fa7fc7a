import pytest
from sqlalchemy.exc import OperationalError

from salesdesk import access, models
from salesdesk.access import AccessSession, Action
from salesdesk.errors import AccessRevokedError, AuthorizationError, NotFoundError, StoreError, ValidationError

from conftest import make_principal


def test_missing_permissions_row_is_default_allow(db_session, user):
    perms = access.load_permissions(db_session, user.id)
    assert (perms.can_create, perms.can_edit, perms.can_delete) == (True, True, True)
    assert perms.explicit is False
    # the synthesized row is not persisted
    assert db_session.get(models.FeaturePermissions, user.id) is None


def test_default_allow_matches_explicit_all_true(db_session, user):
    explicit = make_principal(db_session, "explicit@example.com", can_create=True, can_edit=True, can_delete=True)
    for action in Action:
        assert access.authorize(db_session, user.id, action).id == user.id
        assert access.authorize(db_session, explicit.id, action).id == explicit.id


def test_missing_flag_denies_only_that_action(db_session):
    p = make_principal(db_session, "nodelete@example.com", can_delete=False)
    access.authorize(db_session, p.id, Action.CREATE)
    access.authorize(db_session, p.id, Action.EDIT)
    with pytest.raises(AuthorizationError):
        access.authorize(db_session, p.id, Action.DELETE)


def test_blocked_is_refused_regardless_of_flags(db_session):
    p = make_principal(db_session, "blocked@example.com", role="blocked", can_create=True)
    with pytest.raises(AccessRevokedError):
        access.authorize(db_session, p.id, Action.CREATE)
    with pytest.raises(AccessRevokedError):
        access.authorize(db_session, p.id)


def test_unknown_or_anonymous_principal(db_session):
    with pytest.raises(AuthorizationError):
        access.authorize(db_session, None, Action.CREATE)
    with pytest.raises(AuthorizationError):
        access.authorize(db_session, 424242, Action.CREATE)


def test_sign_in_reaches_authenticated(db_session, user):
    session = AccessSession(db_session)
    events = []
    session.on_change(lambda event, s: events.append((event, s.state)))
    session.sign_in("USER@example.com", "userpass")
    assert session.state == AccessSession.AUTHENTICATED
    assert session.is_admin() is False
    assert session.can(Action.DELETE)
    assert db_session.get(models.Principal, user.id).last_sign_in is not None
    assert events == [("signed_in", AccessSession.AUTHENTICATED)]

    session.sign_out()
    assert session.state == AccessSession.ANONYMOUS
    assert session.principal is None
    assert events[-1] == ("signed_out", AccessSession.ANONYMOUS)


def test_wrong_password_returns_to_anonymous(db_session, user):
    session = AccessSession(db_session)
    with pytest.raises(AuthorizationError):
        session.sign_in("user@example.com", "nope")
    assert session.state == AccessSession.ANONYMOUS


def test_blocked_principal_never_observed_authenticated(db_session):
    make_principal(db_session, "blocked@example.com", role="blocked", password="pw1234")
    session = AccessSession(db_session)
    seen = []
    session.on_change(lambda event, s: seen.append((event, s.state, s.principal)))
    with pytest.raises(AccessRevokedError):
        session.sign_in("blocked@example.com", "pw1234")
    assert session.state == AccessSession.ANONYMOUS
    assert seen == [("access_revoked", AccessSession.ANONYMOUS, None)]


def test_revalidate_signs_out_after_block(db_session, admin, user):
    session = AccessSession(db_session)
    session.sign_in("user@example.com", "userpass")
    assert access.update_role(db_session, admin.id, user.id, "blocked") == {"success": True}
    with pytest.raises(AccessRevokedError):
        session.revalidate()
    assert session.state == AccessSession.ANONYMOUS


def test_admin_session(db_session, admin):
    session = AccessSession(db_session)
    session.sign_in("admin@example.com", "adminpass")
    assert session.is_admin()


def test_register_creates_user_role(db_session):
    p = access.register(db_session, " New@Example.com ", "secret1", "New Person")
    assert (p.email, p.role) == ("new@example.com", "user")
    with pytest.raises(ValidationError):
        access.register(db_session, "new@example.com", "another1")
    with pytest.raises(ValidationError):
        access.register(db_session, "not-an-email", "secret1")


def test_update_role_rules(db_session, admin, user):
    other_admin = make_principal(db_session, "admin2@example.com", role="admin")
    assert access.update_role(db_session, user.id, admin.id, "blocked")["success"] is False
    assert access.update_role(db_session, admin.id, admin.id, "user")["success"] is False
    assert access.update_role(db_session, admin.id, other_admin.id, "blocked")["success"] is False
    result = access.update_role(db_session, admin.id, user.id, "superuser")
    assert result["success"] is False and "Invalid role" in result["error"]
    assert access.update_role(db_session, admin.id, 999, "user")["success"] is False

    assert access.update_role(db_session, admin.id, user.id, "admin") == {"success": True}
    assert db_session.get(models.Principal, user.id).role == "admin"


def test_update_permissions_persists(db_session, admin, user):
    perms = access.update_permissions(db_session, admin.id, user.id, can_delete=False)
    assert (perms.can_create, perms.can_edit, perms.can_delete, perms.explicit) == (True, True, False, True)
    with pytest.raises(AuthorizationError):
        access.authorize(db_session, user.id, Action.DELETE)
    perms = access.update_permissions(db_session, admin.id, user.id, can_delete=True, can_edit=False)
    assert (perms.can_edit, perms.can_delete) == (False, True)


def test_update_permissions_rules(db_session, admin, user):
    blocked = make_principal(db_session, "blocked@example.com", role="blocked")
    with pytest.raises(AuthorizationError):
        access.update_permissions(db_session, user.id, admin.id, can_create=False)
    with pytest.raises(AuthorizationError):
        access.update_permissions(db_session, admin.id, admin.id, can_create=False)
    with pytest.raises(AuthorizationError):
        access.update_permissions(db_session, admin.id, blocked.id, can_create=False)
    with pytest.raises(NotFoundError):
        access.update_permissions(db_session, admin.id, 999, can_create=False)


def test_list_principals_admin_only(db_session, admin, user):
    assert [p.email for p in access.list_principals(db_session, admin.id)] == ["admin@example.com", "user@example.com"]
    with pytest.raises(AuthorizationError):
        access.list_principals(db_session, user.id)


def test_failed_sign_in_bookkeeping_returns_to_anonymous(db_session, user, monkeypatch):
    def unavailable(db, principal_id):
        raise StoreError("permission lookup failed")

    monkeypatch.setattr(access, "load_permissions", unavailable)
    session = AccessSession(db_session)
    events = []
    session.on_change(lambda event, s: events.append(event))
    with pytest.raises(StoreError):
        session.sign_in("user@example.com", "userpass")
    assert session.state == AccessSession.ANONYMOUS
    assert session.principal is None
    assert events == []

    monkeypatch.undo()
    session.sign_in("user@example.com", "userpass")
    assert session.state == AccessSession.AUTHENTICATED


def test_permission_row_lookup_failure_is_a_store_error(db_session, admin, user, monkeypatch):
    real_get = db_session.get

    def get(entity, ident, **kwargs):
        if entity is models.FeaturePermissions:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return real_get(entity, ident, **kwargs)

    monkeypatch.setattr(db_session, "get", get)
    with pytest.raises(StoreError):
        access.update_permissions(db_session, admin.id, user.id, can_delete=False)
    monkeypatch.undo()
    assert access.load_permissions(db_session, user.id).explicit is False
