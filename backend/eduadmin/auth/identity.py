"""
Identity provider — accounts, passwords, and id tokens with custom claims.

Owns everything the permission core treats as external: sign-in, sign-up,
token issuance, and the custom `role` / `appRoleId` claims. Passwords are
bcrypt hashes (passlib); tokens are HS256 JWTs.

Claim changes are timestamped so sessions holding an older token know to
force a refresh.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import uuid4

from jose import JWTError
from passlib.context import CryptContext

from eduadmin.auth.jwt import create_id_token, decode_id_token

logger = logging.getLogger(__name__)

_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


class IdentityError(Exception):
    code = "auth/internal-error"


class UserNotFoundError(IdentityError):
    code = "auth/user-not-found"


class InvalidCredentialsError(IdentityError):
    code = "auth/wrong-password"


class EmailAlreadyExistsError(IdentityError):
    code = "auth/email-already-in-use"


class WeakPasswordError(IdentityError):
    code = "auth/weak-password"


@dataclass(frozen=True)
class Principal:
    email: str
    uid: str


@dataclass
class Account:
    uid: str
    email: str
    password_hash: str
    custom_claims: dict[str, Any] = field(default_factory=dict)
    claims_updated_at: float = 0.0

    @property
    def principal(self) -> Principal:
        return Principal(email=self.email, uid=self.uid)


def hash_password(plain: str) -> str:
    return _ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return _ctx.verify(plain, hashed)


class IdentityProvider:
    def __init__(self):
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        self._uid_by_email: dict[str, str] = {}
        self._tokens: dict[str, tuple[str, float]] = {}

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    # ── Accounts ──

    def get_user_by_email(self, email: str) -> Account:
        uid = self._uid_by_email.get(self._key(email))
        if uid is None:
            raise UserNotFoundError(f"There is no user record corresponding to {email}")
        return self._accounts[uid]

    def get_user(self, uid: str) -> Account:
        account = self._accounts.get(uid)
        if account is None:
            raise UserNotFoundError(f"There is no user record for uid {uid}")
        return account

    def sign_up(self, email: str, password: str) -> Principal:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise WeakPasswordError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        key = self._key(email)
        with self._lock:
            if key in self._uid_by_email:
                raise EmailAlreadyExistsError("The email address is already in use by another account")
            account = Account(uid=uuid4().hex, email=email.strip(), password_hash=hash_password(password))
            self._accounts[account.uid] = account
            self._uid_by_email[key] = account.uid
        logger.info("Account created: %s", account.email)
        return account.principal

    def sign_in(self, email: str, password: str) -> Principal:
        account = self.get_user_by_email(email)
        if not verify_password(password, account.password_hash):
            raise InvalidCredentialsError("The password is invalid")
        return account.principal

    def sign_out(self, uid: str) -> None:
        self._tokens.pop(uid, None)
        logger.info("Signed out: %s", uid)

    # ── Claims & tokens ──

    def set_custom_claims(self, uid: str, claims: Mapping[str, Any]) -> None:
        account = self.get_user(uid)
        with self._lock:
            account.custom_claims = dict(claims)
            account.claims_updated_at = time.time()
        logger.info("Custom claims set for %s: %s", account.email, sorted(claims))

    def claims_changed_since(self, uid: str, issued_at: float) -> bool:
        account = self._accounts.get(uid)
        return account is not None and account.claims_updated_at > issued_at

    def get_id_token(self, uid: str, force_refresh: bool = False) -> str:
        """
        The account's id token. A cached token is reused unless a refresh is
        forced or the claims changed after it was issued.
        """
        account = self.get_user(uid)
        cached = self._tokens.get(uid)
        if cached is not None and not force_refresh and cached[1] >= account.claims_updated_at:
            return cached[0]
        issued_at = time.time()
        token = create_id_token(account.uid, account.email, account.custom_claims)
        self._tokens[uid] = (token, issued_at)
        return token

    def verify_id_token(self, token: str) -> dict:
        """Decoded claims for a valid token of a known account. Raises JWTError."""
        claims = decode_id_token(token)
        if claims.get("sub") not in self._accounts:
            raise JWTError("Token subject is not a known account")
        return claims
