"""
Role resolution for signed-in accounts.

Decides whether an identity is a coach, a player (with its player document)
or neither. The coach flag from the role record is trusted outright; without
it the player and coach collections are searched for a profile linked to the
identity's uid.
"""
import threading
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

from database import DocumentStore, where
from errors import APIError
from identity import SessionContext, SessionManager
from logging_config import get_logger
from schemas import Identity

logger = get_logger(__name__)

UNRECOGNIZED_MESSAGE = (
    "Your login account is not linked to a player or coach profile. Please contact an administrator."
)
UNVERIFIED_MESSAGE = "An error occurred while verifying your profile. Please try again later."

RoleKind = Literal["coach", "player", "unrecognized", "unverified"]


class RoleResolution(BaseModel):
    kind: RoleKind
    player: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    @property
    def is_coach(self) -> bool:
        return self.kind == "coach"


class RoleResolver:
    def __init__(self, store: DocumentStore):
        self.store = store

    def resolve(self, identity: Identity) -> RoleResolution:
        if identity.is_coach:
            return RoleResolution(kind="coach")

        try:
            player = self.store.first("players", [where("userId", "==", identity.uid)])
            if player:
                return RoleResolution(kind="player", player=player)

            coach = self.store.first("coaches", [where("userId", "==", identity.uid)])
            if coach:
                logger.warning(
                    f"User {identity.email} has isCoach=false in 'users' doc, but a linked coach "
                    f"profile was found. Treating as coach for this session."
                )
                return RoleResolution(kind="coach")
        except APIError as e:
            logger.error(f"Error resolving role for {identity.uid}: {e.message}")
            return RoleResolution(kind="unverified", message=UNVERIFIED_MESSAGE)

        return RoleResolution(kind="unrecognized", message=UNRECOGNIZED_MESSAGE)


class RoleCache:
    """
    Resolution per live session, recomputed on every sign-in event.

    A resolution that finishes after its session was signed out or replaced
    is dropped instead of being stored.
    """

    def __init__(self, resolver: RoleResolver, sessions: SessionManager):
        self.resolver = resolver
        self.sessions = sessions
        self._results: Dict[str, RoleResolution] = {}
        self._lock = threading.Lock()
        sessions.on_session_change(self._on_session_change)

    def _on_session_change(self, token: str, session: Optional[SessionContext]) -> None:
        if session is None:
            with self._lock:
                self._results.pop(token, None)
            return
        self._store(session, self.resolver.resolve(session.identity))

    def _store(self, session: SessionContext, resolution: RoleResolution) -> bool:
        with self._lock:
            if not self.sessions.is_current(session):
                logger.info(f"Discarding role resolution for superseded session of {session.identity.email}")
                return False
            self._results[session.token] = resolution
            return True

    def get(self, session: SessionContext) -> RoleResolution:
        with self._lock:
            cached = self._results.get(session.token)
        if cached is not None:
            return cached
        resolution = self.resolver.resolve(session.identity)
        self._store(session, resolution)
        return resolution
