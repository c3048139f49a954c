"""
Identity gateway and signed-in session state.

Credentials are checked by Firebase Authentication through its REST API. The
role flags of an account come from our own "users" collection and are read
once per sign-in. Each sign-in produces an immutable SessionContext that the
HTTP layer hands to every route; nothing else holds session state.
"""
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from pydantic import BaseModel, ConfigDict

from config import FIREBASE_API_KEY, IDENTITY_BASE_URL, IDENTITY_TIMEOUT, SESSION_TTL
from database import DocumentStore, where
from errors import APIError, IdentityServiceError, InvalidCredentialsError
from logging_config import get_logger
from schemas import Identity

logger = get_logger(__name__)

_INVALID_CREDENTIAL_CODES = {"INVALID_LOGIN_CREDENTIALS", "INVALID_PASSWORD", "EMAIL_NOT_FOUND"}


class Account(BaseModel):
    """What the identity provider knows about a user."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class IdentityGateway:
    def authenticate(self, email: str, password: str) -> Account:
        raise NotImplementedError


class FirebaseIdentityGateway(IdentityGateway):
    def __init__(self, api_key: str = FIREBASE_API_KEY, base_url: str = IDENTITY_BASE_URL,
                 timeout: float = IDENTITY_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def authenticate(self, email: str, password: str) -> Account:
        if not self.api_key:
            raise IdentityServiceError("Identity provider not configured. Set FIREBASE_API_KEY.")

        url = f"{self.base_url}/accounts:signInWithPassword"
        payload = {"email": email, "password": password, "returnSecureToken": True}
        try:
            r = requests.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Error contacting identity provider: {e}")
            raise IdentityServiceError()

        if r.status_code != 200:
            code = _error_code(r)
            if code in _INVALID_CREDENTIAL_CODES:
                raise InvalidCredentialsError()
            logger.error(f"Identity provider error: {r.status_code} {code or r.text[:120]}")
            raise IdentityServiceError()

        data = r.json()
        return Account(
            uid=data["localId"],
            email=data.get("email"),
            display_name=data.get("displayName") or None,
            photo_url=data.get("profilePicture") or None,
        )


def _error_code(response: requests.Response) -> str:
    try:
        message = response.json().get("error", {}).get("message", "")
    except ValueError:
        return ""
    # e.g. "TOO_MANY_ATTEMPTS_TRY_LATER : Access to this account has been ..."
    return message.split(" ")[0] if message else ""


def load_role_flags(store: DocumentStore, account: Account) -> Tuple[bool, bool]:
    """
    Read (is_admin, is_coach) from the user's role record.

    The record is keyed by uid; records created by hand in the admin console
    may only share the email, so that is tried second. A failed read leaves
    the user signed in without privileges.
    """
    try:
        record = store.get("users", account.uid)
        if record is None and account.email:
            record = store.first("users", [where("email", "==", account.email)])
    except APIError as e:
        logger.error(f"Error fetching role record for {account.uid}: {e.message}")
        return False, False
    if not record:
        return False, False
    return record.get("isAdmin") is True, record.get("isCoach") is True


class SessionContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    identity: Identity
    generation: int
    signed_in_at: datetime


SessionListener = Callable[[str, Optional[SessionContext]], None]


class SessionManager:
    """
    Sign-in/sign-out and the table of live sessions.

    Listeners get ``(token, session)`` on sign-in and ``(token, None)`` on
    sign-out or expiry. Every change bumps the generation counter. A session
    expires ``ttl`` seconds after sign-in; expired sessions are evicted when
    their token is next presented and swept on every sign-in.
    """

    def __init__(self, gateway: IdentityGateway, store: DocumentStore, ttl: int = SESSION_TTL,
                 clock: Optional[Callable[[], datetime]] = None):
        self.gateway = gateway
        self.store = store
        self.ttl = timedelta(seconds=ttl)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: Dict[str, SessionContext] = {}
        self._listeners: List[SessionListener] = []
        self._generation = 0
        self._lock = threading.Lock()

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def sign_in(self, email: str, password: str) -> SessionContext:
        account = self.gateway.authenticate(email, password)
        is_admin, is_coach = load_role_flags(self.store, account)
        identity = Identity(
            uid=account.uid,
            email=account.email,
            display_name=account.display_name,
            photo_url=account.photo_url,
            is_admin=is_admin,
            is_coach=is_coach,
        )
        now = self.clock()
        with self._lock:
            expired = self._evict(lambda s: self._is_expired(s, now))
            self._generation += 1
            session = SessionContext(
                token=secrets.token_urlsafe(32),
                identity=identity,
                generation=self._generation,
                signed_in_at=now,
            )
            self._sessions[session.token] = session
        self._announce_expired(expired)
        logger.info(f"Signed in {identity.email} (admin={is_admin}, coach={is_coach})")
        self._notify(session.token, session)
        return session

    def sign_out(self, token: str) -> None:
        with self._lock:
            session = self._sessions.pop(token, None)
            if session is None:
                return
            self._generation += 1
        logger.info(f"Signed out {session.identity.email}")
        self._notify(token, None)

    def current(self, token: Optional[str]) -> Optional[SessionContext]:
        """Live session for ``token``; an expired one is evicted and refused."""
        if not token:
            return None
        now = self.clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None or not self._is_expired(session, now):
                return session
            expired = self._evict(lambda s: s.token == token)
        self._announce_expired(expired)
        return None

    def is_current(self, session: SessionContext) -> bool:
        """False once the session has been signed out, replaced or has expired."""
        now = self.clock()
        with self._lock:
            live = self._sessions.get(session.token)
            return live is not None and live.generation == session.generation and not self._is_expired(live, now)

    def _is_expired(self, session: SessionContext, now: datetime) -> bool:
        return now - session.signed_in_at >= self.ttl

    def _evict(self, predicate: Callable[[SessionContext], bool]) -> List[SessionContext]:
        # caller holds self._lock
        expired = [s for s in self._sessions.values() if predicate(s)]
        for session in expired:
            del self._sessions[session.token]
        if expired:
            self._generation += 1
        return expired

    def _announce_expired(self, expired: List[SessionContext]) -> None:
        for session in expired:
            logger.info(f"Session for {session.identity.email} expired")
            self._notify(session.token, None)

    def _notify(self, token: str, session: Optional[SessionContext]) -> None:
        for listener in list(self._listeners):
            listener(token, session)


def session_payload(session: SessionContext) -> Dict[str, Any]:
    identity = session.identity
    return {
        "token": session.token,
        "user": {
            "uid": identity.uid,
            "email": identity.email,
            "displayName": identity.display_name,
            "photoUrl": identity.photo_url,
            "isAdmin": identity.is_admin,
            "isCoach": identity.is_coach,
        },
    }
