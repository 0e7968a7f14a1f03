"""
Explicit auth sessions.

An AuthSession is created by SessionManager (sign in, sign up is followed by
email verification, restore from a persisted token) and passed to every
service call that needs authorization. Sign-out clears it. There is no
process-wide "current user".
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.auth.identity import IdentityService
from storefront.auth.roles import CAPABILITY_OWNERS, Role, role_for
from storefront.core.errors import BackendError, PermissionDenied, ValidationError
from storefront.data.models import Profile
from storefront.utils.logger import get_logger, kv

logger = get_logger("auth.session")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
RESTORED = "RESTORED"

# Identity responses that mean "credentials or token refused", as opposed to an outage
REJECTED_STATUS_CODES = (400, 401, 403)


def _rejected(error: BackendError) -> bool:
    return error.details.get("status_code") in REJECTED_STATUS_CODES


@dataclass
class AuthSession:
    user_id: str
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    access_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_profile(cls, profile: Profile, access_token: Optional[str] = None) -> "AuthSession":
        return cls(
            user_id=profile.id,
            email=profile.email,
            name=profile.name,
            role=role_for(profile.role),
            phone=profile.phone,
            access_token=access_token,
        )

    def require(self, capability: str, action: str = "perform this action") -> None:
        """Raise PermissionDenied unless this session's role holds ``capability``."""
        if getattr(self.role, capability, False):
            return
        holder = CAPABILITY_OWNERS.get(capability)
        who = f"Only {holder.label}" if holder else "You are not allowed to"
        raise PermissionDenied(f"{who} can {action}", {"role": self.role.tag, "capability": capability})

    def owns(self, owner_id: Optional[str]) -> bool:
        return owner_id is not None and owner_id == self.user_id


Listener = Callable[[str, Optional[AuthSession]], None]


class SessionManager:
    """
    Session lifecycle against the identity service and the profiles table.

    Listeners registered with ``on_change`` receive ``(event, session)`` on
    sign-in, restore and sign-out (session is None on sign-out).
    """

    def __init__(self, db: Session, identity: IdentityService):
        self.db = db
        self.identity = identity
        self._listeners: List[Listener] = []

    def on_change(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error("auth: %s", kv(method="emit", event=event, result="listener_error", error=e))

    def _profile(self, user_id: str) -> Optional[Profile]:
        try:
            return self.db.query(Profile).filter(Profile.id == user_id).first()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def restore(self, access_token: str) -> Optional[AuthSession]:
        """
        Resolve a persisted token at startup. Returns None if the identity
        service refuses the token or it no longer maps to a profile; outages
        raise BackendError.
        """
        try:
            user = self.identity.get_user(access_token)
        except BackendError as e:
            if not _rejected(e):
                logger.error("auth: %s", kv(method="restore", result="error", error=e))
                raise
            logger.warning("auth: %s", kv(method="restore", result="token_rejected", error=e))
            return None
        profile = self._profile(user.id)
        if profile is None:
            logger.warning("auth: %s", kv(method="restore", user_id=user.id, result="no_profile"))
            return None
        session = AuthSession.from_profile(profile, access_token)
        logger.info("auth: %s", kv(method="restore", user_id=session.user_id, role=session.role.tag))
        self._emit(RESTORED, session)
        return session

    def sign_in(self, username: str, password: str) -> AuthSession:
        if not (username or "").strip() or not password:
            raise ValidationError("Please fill in all fields")
        try:
            profile = self.db.query(Profile).filter(Profile.name == username.strip()).first()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        if profile is None or not profile.email:
            logger.info("auth: %s", kv(method="sign_in", username=username, result="unknown_user"))
            raise PermissionDenied("Invalid username or password")

        try:
            token, user = self.identity.sign_in_with_password(profile.email, password)
        except BackendError as e:
            if not _rejected(e):
                logger.error("auth: %s", kv(method="sign_in", username=username, result="error", error=e))
                raise
            logger.info("auth: %s", kv(method="sign_in", username=username, result="bad_credentials"))
            raise PermissionDenied("Invalid username or password") from None

        if not user.confirmed:
            try:
                self.identity.sign_out(token)
            except BackendError as e:
                logger.warning("auth: %s", kv(method="sign_in", user_id=user.id, result="sign_out_failed", error=e))
            raise PermissionDenied("Please verify your email first")

        profile = self._profile(user.id) or profile
        session = AuthSession.from_profile(profile, token)
        logger.info("auth: %s", kv(method="sign_in", user_id=session.user_id, role=session.role.tag, result="success"))
        self._emit(SIGNED_IN, session)
        return session

    def sign_up(self, username: str, email: str, password: str, role: str, phone: Optional[str] = None) -> Profile:
        """Create the identity and its profile. The user must verify their email before signing in."""
        username = (username or "").strip()
        email = (email or "").strip()
        if not username or not email or not password:
            raise ValidationError("Please fill in all fields")
        if "@" not in email:
            raise ValidationError("Please enter a valid email address", {"field": "email"})
        resolved = role_for(role)

        try:
            taken = self.db.query(func.count(Profile.id)).filter(Profile.name == username).scalar()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        if taken:
            raise ValidationError("Username already taken", {"field": "name"})

        user = self.identity.sign_up(email, password, {"name": username, "role": resolved.tag})

        try:
            profile = self.db.get(Profile, user.id) or Profile(id=user.id)
            profile.email = email
            profile.name = username
            profile.role = resolved.tag
            profile.phone = phone
            self.db.add(profile)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("auth: %s", kv(method="sign_up", user_id=user.id, result="error", error=e))
            raise BackendError(str(e)) from e

        logger.info("auth: %s", kv(method="sign_up", user_id=user.id, role=resolved.tag, result="success"))
        return profile

    def sign_out(self, session: AuthSession) -> None:
        """Revoke the token; the local session is cleared even if revocation fails."""
        if session.access_token:
            try:
                self.identity.sign_out(session.access_token)
            except BackendError as e:
                logger.error("auth: %s", kv(method="sign_out", user_id=session.user_id, result="error", error=e))
        session.access_token = None
        logger.info("auth: %s", kv(method="sign_out", user_id=session.user_id, result="success"))
        self._emit(SIGNED_OUT, None)
