"""Identity and access control.

Principals carry a coarse role (admin, user, blocked) and optional feature
flags gating order create/edit/delete. Every privileged operation calls
`authorize`, which re-reads the principal from the store, so blocking a
principal takes effect on its next call even if it still holds a token.
"""
import enum
import logging
from typing import Callable, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .auth import hash_password, verify_password
from .errors import AccessRevokedError, AuthorizationError, NotFoundError, StoreError, ValidationError
from .time_utils import utcnow

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


class EffectivePermissions(NamedTuple):
    can_create: bool = True
    can_edit: bool = True
    can_delete: bool = True
    # False when synthesized from the default-allow policy
    explicit: bool = False

    def allows(self, action: Action) -> bool:
        return getattr(self, f"can_{action.value}")


DEFAULT_PERMISSIONS = EffectivePermissions()


def _commit(db: Session, what: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"{what} failed") from e


def _load_principal(db: Session, principal_id: int) -> Optional[models.Principal]:
    try:
        principal = db.get(models.Principal, principal_id)
        if principal is not None:
            # pick up changes committed through other sessions
            db.refresh(principal)
        return principal
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("principal lookup failed") from e


def load_permissions(db: Session, principal_id: int) -> EffectivePermissions:
    """The only place where a missing permissions row turns into default-allow."""
    try:
        row = db.get(models.FeaturePermissions, principal_id)
        if row is not None:
            db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("permission lookup failed") from e
    if row is None:
        return DEFAULT_PERMISSIONS
    return EffectivePermissions(row.can_create, row.can_edit, row.can_delete, explicit=True)


def authorize(db: Session, principal_id: Optional[int], action: Optional[Action] = None) -> models.Principal:
    """Return the acting principal if it may perform `action`, else raise AuthorizationError.

    With `action=None` only the role is checked (any non-blocked principal passes).
    """
    if principal_id is None:
        raise AuthorizationError("not signed in")
    principal = _load_principal(db, principal_id)
    if principal is None:
        logger.warning("unknown principal %s attempted %s", principal_id, action)
        raise AuthorizationError("unknown principal")
    if principal.role == "blocked":
        logger.warning("blocked principal %s attempted %s", principal_id, action)
        raise AccessRevokedError("access revoked")
    if action is not None and not load_permissions(db, principal_id).allows(action):
        logger.warning("principal %s lacks %s permission", principal_id, action.value)
        raise AuthorizationError(f"permission denied: {action.value} orders")
    return principal


def require_admin(db: Session, principal_id: Optional[int]) -> models.Principal:
    principal = authorize(db, principal_id)
    if principal.role != "admin":
        raise AuthorizationError("admin role required")
    return principal


def register(db: Session, email: str, password: str, display_name: Optional[str] = None) -> models.Principal:
    """Sign up a new principal with the ordinary `user` role."""
    email = email.strip().lower()
    if "@" not in email:
        raise ValidationError("invalid email address")
    principal = models.Principal(
        email=email,
        display_name=display_name,
        role="user",
        password_hash=hash_password(password),
    )
    db.add(principal)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("email already registered") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("sign-up failed") from e
    db.refresh(principal)
    logger.info("principal %s registered", principal.id)
    return principal


class AccessSession:
    """Per-client session: anonymous -> authenticating -> authenticated -> anonymous.

    Listeners are called as ``listener(event, session)`` with event one of
    ``signed_in``, ``signed_out`` or ``access_revoked``.
    """

    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"

    def __init__(self, db: Session):
        self.db = db
        self.state = self.ANONYMOUS
        self.principal: Optional[models.Principal] = None
        self.permissions: Optional[EffectivePermissions] = None
        self._listeners: list[Callable] = []

    def on_change(self, listener: Callable):
        self._listeners.append(listener)
        return listener

    def _notify(self, event: str):
        for listener in list(self._listeners):
            listener(event, self)

    def _reset(self):
        self.state = self.ANONYMOUS
        self.principal = None
        self.permissions = None

    def sign_in(self, email: str, password: str) -> models.Principal:
        if self.state != self.ANONYMOUS:
            self.sign_out()
        self.state = self.AUTHENTICATING
        try:
            principal = self.db.query(models.Principal).populate_existing().filter(
                models.Principal.email == email.strip().lower()
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._reset()
            raise StoreError("principal lookup failed") from e
        if principal is None or not principal.password_hash or not verify_password(password, principal.password_hash):
            self._reset()
            raise AuthorizationError("invalid credentials")

        if principal.role == "blocked":
            self._reset()
            logger.warning("blocked principal %s refused at sign-in", principal.id)
            self._notify("access_revoked")
            raise AccessRevokedError("access revoked")

        try:
            permissions = load_permissions(self.db, principal.id)
            principal.last_sign_in = utcnow()
            _commit(self.db, "sign-in bookkeeping")
        except StoreError:
            self._reset()
            raise

        self.principal = principal
        self.permissions = permissions
        self.state = self.AUTHENTICATED
        logger.info("principal %s signed in", principal.id)
        self._notify("signed_in")
        return principal

    def sign_out(self):
        was_signed_in = self.state == self.AUTHENTICATED
        self._reset()
        if was_signed_in:
            self._notify("signed_out")

    def revalidate(self) -> models.Principal:
        """Re-read role and flags; a principal blocked meanwhile is signed out."""
        if self.state != self.AUTHENTICATED:
            raise AuthorizationError("not signed in")
        try:
            principal = authorize(self.db, self.principal.id)
        except AccessRevokedError:
            self._reset()
            self._notify("access_revoked")
            raise
        self.principal = principal
        self.permissions = load_permissions(self.db, principal.id)
        return principal

    def is_admin(self) -> bool:
        return self.principal is not None and self.principal.role == "admin"

    def can(self, action: Action) -> bool:
        return self.state == self.AUTHENTICATED and self.permissions.allows(action)


def _target(db: Session, target_id: int) -> models.Principal:
    target = _load_principal(db, target_id)
    if target is None:
        raise NotFoundError("principal not found")
    return target


def update_permissions(db: Session, actor_id: int, target_id: int, can_create: Optional[bool] = None,
                       can_edit: Optional[bool] = None, can_delete: Optional[bool] = None) -> EffectivePermissions:
    require_admin(db, actor_id)
    if actor_id == target_id:
        raise AuthorizationError("cannot change your own permissions")
    target = _target(db, target_id)
    if target.role == "blocked":
        raise AuthorizationError("cannot change permissions of a blocked principal")

    try:
        row = db.get(models.FeaturePermissions, target_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("permission lookup failed") from e
    if row is None:
        # first explicit change: persist the default-allow row, then apply
        row = models.FeaturePermissions(principal_id=target_id, can_create=True, can_edit=True, can_delete=True)
        db.add(row)
    if can_create is not None:
        row.can_create = can_create
    if can_edit is not None:
        row.can_edit = can_edit
    if can_delete is not None:
        row.can_delete = can_delete
    _commit(db, "permission update")
    logger.info("principal %s updated permissions of %s", actor_id, target_id)
    return load_permissions(db, target_id)


def update_role(db: Session, actor_id: int, target_id: int, role: str) -> dict:
    """Privileged role change. Returns ``{"success": bool, "error"?: str}`` and never raises."""
    try:
        if role not in models.ROLES:
            raise ValidationError(f"Invalid role value. Must be one of: {', '.join(models.ROLES)}")
        require_admin(db, actor_id)
        if actor_id == target_id:
            raise AuthorizationError("cannot change your own role")
        target = _target(db, target_id)
        if target.role == "admin":
            raise AuthorizationError("cannot change the role of an admin")
        target.role = role
        _commit(db, "role update")
    except (ValidationError, AuthorizationError, NotFoundError, StoreError) as e:
        logger.warning("role change of %s to %r by %s refused: %s", target_id, role, actor_id, e)
        return {"success": False, "error": str(e)}
    logger.info("principal %s set role of %s to %s", actor_id, target_id, role)
    return {"success": True}


def list_principals(db: Session, actor_id: int) -> list[models.Principal]:
    require_admin(db, actor_id)
    try:
        return db.query(models.Principal).order_by(models.Principal.id).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("principal listing failed") from e
