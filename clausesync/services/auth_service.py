"""
Identity provider and user profiles

Accounts (email + salted PBKDF2 hash) and bearer tokens live in the
accounts / auth_sessions tables; roles live in the users table. The first
profile created while the users table is empty becomes the admin, every
later one starts as pending.
"""

import hashlib
import hmac
import inspect
import logging
import re
import secrets
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clausesync.database.database import SessionLocal
from clausesync.database.models import AccountRecord, AuthSession, UserRecord
from clausesync.database.schemas import AuthResult, Identity, Role, UserProfile
from clausesync.services.exceptions import NotFound, StoreFailure, Unauthenticated, ValidationError

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 120_000
MIN_PASSWORD_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

AuthListener = Callable[[str, Optional[Identity]], Union[None, Awaitable[None]]]


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, expected = stored.partition("$")
    candidate = hash_password(password, salt).partition("$")[2]
    return hmac.compare_digest(candidate, expected)


def _profile(record: UserRecord) -> UserProfile:
    return UserProfile(uid=record.uid, email=record.email, role=Role(record.role), created_at=record.created_at)


class AuthService:
    """Email/password sign-up, sign-in, sign-out and the auth-state stream"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory
        self._listeners: List[AuthListener] = []

    # ------------------------------------------------------------------
    # Auth-state stream
    # ------------------------------------------------------------------

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, token: str, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(token, identity)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[!] Auth state listener error: {e}")

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str) -> AuthResult:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("A valid email address is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        db: Session = self.session_factory()
        try:
            if db.query(AccountRecord).filter(AccountRecord.email == email).first():
                raise ValidationError("An account with this email already exists")
            account = AccountRecord(
                uid=str(uuid.uuid4()),
                email=email,
                password_hash=hash_password(password),
                created_at=datetime.utcnow()
            )
            db.add(account)
            db.commit()
            identity = Identity(uid=account.uid, email=account.email)
        except IntegrityError as e:
            db.rollback()
            raise ValidationError("An account with this email already exists") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreFailure(f"Sign-up failed: {e}") from e
        finally:
            db.close()

        profile = await self.ensure_profile(identity)
        logger.info(f"[OK] Signed up {email} as {profile.role.value}")
        return await self._open_session(identity)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        email = (email or "").strip().lower()
        db: Session = self.session_factory()
        try:
            account = db.query(AccountRecord).filter(AccountRecord.email == email).first()
            if account is None or not verify_password(password or "", account.password_hash):
                raise Unauthenticated("Invalid email or password")
            identity = Identity(uid=account.uid, email=account.email)
        finally:
            db.close()
        return await self._open_session(identity)

    async def sign_out(self, token: str) -> None:
        db: Session = self.session_factory()
        try:
            db.query(AuthSession).filter(AuthSession.token == token).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreFailure(f"Sign-out failed: {e}") from e
        finally:
            db.close()
        await self._notify(token, None)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        """Identity behind a bearer token, or None"""
        if not token:
            return None
        db: Session = self.session_factory()
        try:
            row = (
                db.query(AccountRecord)
                .join(AuthSession, AuthSession.uid == AccountRecord.uid)
                .filter(AuthSession.token == token)
                .first()
            )
            return Identity(uid=row.uid, email=row.email) if row else None
        finally:
            db.close()

    async def _open_session(self, identity: Identity) -> AuthResult:
        token = secrets.token_hex(32)
        db: Session = self.session_factory()
        try:
            db.add(AuthSession(token=token, uid=identity.uid, created_at=datetime.utcnow()))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreFailure(f"Could not open session: {e}") from e
        finally:
            db.close()
        await self._notify(token, identity)
        return AuthResult(token=token, identity=identity)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, uid: str) -> Optional[UserProfile]:
        db: Session = self.session_factory()
        try:
            record = db.get(UserRecord, uid)
            return _profile(record) if record else None
        finally:
            db.close()

    async def ensure_profile(self, identity: Identity) -> UserProfile:
        """Existing profile, or a new one: admin when no profile exists yet, else pending"""
        existing = self.get_profile(identity.uid)
        if existing:
            return existing

        db: Session = self.session_factory()
        try:
            is_first_user = db.query(UserRecord).first() is None
            record = UserRecord(
                uid=identity.uid,
                email=identity.email,
                role=(Role.ADMIN if is_first_user else Role.PENDING).value,
                created_at=datetime.utcnow()
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            logger.info(f"[OK] Profile created for {identity.email} with role {record.role}")
            return _profile(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[!] Error creating user profile: {e}")
            raise StoreFailure(f"Error creating user profile: {e}") from e
        finally:
            db.close()

    def list_users(self) -> List[UserProfile]:
        db: Session = self.session_factory()
        try:
            return [_profile(r) for r in db.query(UserRecord).order_by(UserRecord.email).all()]
        finally:
            db.close()

    def update_role(self, uid: str, role: Role) -> UserProfile:
        db: Session = self.session_factory()
        try:
            record = db.get(UserRecord, uid)
            if record is None:
                raise NotFound(f"User {uid} not found")
            record.role = Role(role).value
            db.commit()
            db.refresh(record)
            logger.info(f"[OK] Role of {record.email} set to {record.role}")
            return _profile(record)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreFailure(f"Failed to update user role: {e}") from e
        finally:
            db.close()
