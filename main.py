from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.errors import PyMongoError

import admin
import database
from config import CORS_ORIGINS, DATABASE_NAME, DATABASE_URL, PORT
from database import DocumentStore, MongoDocumentStore, get_store, where
from errors import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ConfirmationRequiredError,
    NotFoundError,
    ValidationError,
    api_error_handler,
)
from feed import home_feed, iso, match_summary, next_match, schedule
from identity import (
    FirebaseIdentityGateway,
    IdentityGateway,
    SessionContext,
    SessionManager,
    session_payload,
)
from leaderboard import SortConfig, SortKey, Direction, leaderboards, request_sort, sort_stats_table
from logging_config import get_logger, setup_logging
from roles import RoleCache, RoleResolution, RoleResolver
from roster import Category, load_roster, public_profile
from schemas import DraftDetails, DraftRequest, GoalScorerIn, LoginRequest, PitchPlacement, PlayerRef
from tactics import DraftRegistry, TacticsEditor, list_tactics, load_board

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    if isinstance(store, MongoDocumentStore):
        try:
            store.ensure_indexes()
        except APIError as e:
            logger.error(f"Could not create indexes: {e.message}")
    yield


app = FastAPI(title="FFC Club API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(APIError, api_error_handler)

# ----------------------
# Services
# ----------------------

class Services:
    """Store, session table and everything that listens to sign-in events."""

    def __init__(self, store: DocumentStore, gateway: IdentityGateway):
        self.store = store
        self.sessions = SessionManager(gateway, store)
        self.roles = RoleCache(RoleResolver(store), self.sessions)
        self.drafts = DraftRegistry(self.sessions)


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = Services(get_store(), FirebaseIdentityGateway())
    return _services


bearer = HTTPBearer(auto_error=False)


def current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    services: Services = Depends(get_services),
) -> SessionContext:
    session = services.sessions.current(credentials.credentials if credentials else None)
    if session is None:
        raise AuthenticationError()
    return session


def admin_session(session: SessionContext = Depends(current_session)) -> SessionContext:
    if not session.identity.is_admin:
        raise AuthorizationError("You do not have administrative privileges.")
    return session


def coach_session(
    session: SessionContext = Depends(current_session),
    services: Services = Depends(get_services),
) -> SessionContext:
    if not services.roles.get(session).is_coach:
        raise AuthorizationError("Only coaches can manage tactics.")
    return session


def _role_payload(resolution: RoleResolution) -> Dict[str, Any]:
    return {"role": resolution.kind, "message": resolution.message}


# ----------------------
# Routes
# ----------------------
@app.get("/")
def root():
    return {"message": "FFC Club API"}


# Auth

@app.post("/api/auth/login")
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    session = services.sessions.sign_in(payload.email.strip(), payload.password)
    body = session_payload(session)
    body.update(_role_payload(services.roles.get(session)))
    return body


@app.post("/api/auth/admin/login")
def admin_login(payload: LoginRequest, services: Services = Depends(get_services)):
    session = services.sessions.sign_in(payload.email.strip(), payload.password)
    if not session.identity.is_admin:
        services.sessions.sign_out(session.token)
        raise AuthorizationError("You do not have administrative privileges.")
    return session_payload(session)


@app.post("/api/auth/logout")
def logout(session: SessionContext = Depends(current_session), services: Services = Depends(get_services)):
    services.sessions.sign_out(session.token)
    return {"message": "Logout successful"}


@app.get("/api/auth/session")
def get_session(session: SessionContext = Depends(current_session)):
    return session_payload(session)


# Public screens

@app.get("/api/next-match")
def get_next_match(services: Services = Depends(get_services)):
    try:
        match = next_match(services.store)
    except APIError as e:
        logger.error(f"Next match API error: {e.message}")
        return JSONResponse(status_code=500, content={"error": "Server error"})
    if match is None:
        return JSONResponse(status_code=404, content={"error": "No upcoming matches"})
    return match_summary(match)


@app.get("/api/home")
def get_home(services: Services = Depends(get_services)):
    return home_feed(services.store)


@app.get("/api/schedule")
def get_schedule(services: Services = Depends(get_services)):
    return schedule(services.store)


@app.get("/api/team")
def get_team(search: str = "", category: Category = "all", services: Services = Depends(get_services)):
    return load_roster(services.store, search, category)


@app.get("/api/players/{player_id}")
def get_player(player_id: str, services: Services = Depends(get_services)):
    player = admin.get_item(services.store, "players", player_id)
    if player is None:
        raise NotFoundError("Player not found")
    return public_profile(player)


@app.get("/api/coaches/{coach_id}")
def get_coach(coach_id: str, services: Services = Depends(get_services)):
    coach = admin.get_item(services.store, "coaches", coach_id)
    if coach is None:
        raise NotFoundError("Coach not found")
    return public_profile(coach)


@app.get("/api/leaderboards")
def get_leaderboards(services: Services = Depends(get_services)):
    return leaderboards(services.store.query("players"))


@app.get("/api/leaderboards/stats")
def get_stats_table(
    sort: SortKey = "ga",
    direction: Direction = "descending",
    click: Optional[SortKey] = None,
    services: Services = Depends(get_services),
):
    config = SortConfig(key=sort, direction=direction)
    if click:
        config = request_sort(config, click)
    rows = sort_stats_table(services.store.query("players"), config)
    return {"sort": {"key": config.key, "direction": config.direction}, "rows": rows}


@app.get("/api/tactics/board")
def get_tactics_board(services: Services = Depends(get_services)):
    return load_board(services.store)


# Signed-in profile

@app.get("/api/me")
def get_me(session: SessionContext = Depends(current_session), services: Services = Depends(get_services)):
    resolution = services.roles.get(session)
    body = session_payload(session)
    body.pop("token")
    body.update(_role_payload(resolution))
    if resolution.kind == "player":
        body["profile"] = resolution.player
    return body


# ----------------------
# Coach
# ----------------------

def _upcoming_matches(store: DocumentStore) -> List[Dict[str, Any]]:
    matches = store.query("matches", [where("isPast", "==", False)], order_by=("date", "asc"))
    return [match_summary(m) for m in matches]


def _draft_response(draft_id: str, editor: TacticsEditor, store: DocumentStore) -> Dict[str, Any]:
    body = editor.state(store.query("players", order_by=("number", "asc")))
    body["draftId"] = draft_id
    body["matches"] = _upcoming_matches(store)
    return body


@app.get("/api/coach/dashboard")
def coach_dashboard(session: SessionContext = Depends(coach_session), services: Services = Depends(get_services)):
    store = services.store
    now = datetime.now(timezone.utc)
    upcoming = next_match(store)
    training = store.query("training", [where("date", ">", now)], order_by=("date", "asc"), limit=1)
    return {
        "welcome": session.identity.display_name or session.identity.email,
        "nextMatch": match_summary(upcoming) if upcoming else None,
        "totalPlayers": len(store.query("players")),
        "nextTraining": (
            {"focus": training[0].get("focus"), "location": training[0].get("location"),
             "date": iso(training[0].get("date"))}
            if training else None
        ),
        "tactics": list_tactics(store),
    }


@app.post("/api/coach/tactics/drafts")
def open_draft(
    payload: Optional[DraftRequest] = None,
    session: SessionContext = Depends(coach_session),
    services: Services = Depends(get_services),
):
    editor = TacticsEditor.open(services.store, payload.tactics_id if payload else None)
    draft_id = services.drafts.open(session, editor)
    return _draft_response(draft_id, editor, services.store)


@app.get("/api/coach/tactics/drafts/{draft_id}")
def get_draft(draft_id: str, session: SessionContext = Depends(coach_session),
              services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        return _draft_response(draft_id, editor, services.store)


@app.patch("/api/coach/tactics/drafts/{draft_id}")
def update_draft(draft_id: str, payload: DraftDetails, session: SessionContext = Depends(coach_session),
                 services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        editor.update_details(payload.match_id, payload.formation, payload.general_notes)
        return _draft_response(draft_id, editor, services.store)


@app.post("/api/coach/tactics/drafts/{draft_id}/pitch")
def place_on_pitch(draft_id: str, payload: PitchPlacement, session: SessionContext = Depends(coach_session),
                   services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        if payload.position is not None:
            editor.place_at(payload.player_id, payload.position)
        elif payload.pointer is not None and payload.pitch is not None:
            editor.place_on_pitch(payload.player_id, payload.pointer, payload.pitch)
        else:
            raise ValidationError("Provide either a position or a pointer with the pitch bounds")
        return _draft_response(draft_id, editor, services.store)


@app.post("/api/coach/tactics/drafts/{draft_id}/substitutes")
def move_to_substitutes(draft_id: str, payload: PlayerRef, session: SessionContext = Depends(coach_session),
                        services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        editor.move_to_substitutes(payload.player_id)
        return _draft_response(draft_id, editor, services.store)


@app.delete("/api/coach/tactics/drafts/{draft_id}/substitutes/{player_id}")
def remove_substitute(draft_id: str, player_id: str, session: SessionContext = Depends(coach_session),
                      services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        editor.remove_substitute(player_id)
        return _draft_response(draft_id, editor, services.store)


@app.post("/api/coach/tactics/drafts/{draft_id}/roster")
def return_to_roster(draft_id: str, payload: PlayerRef, session: SessionContext = Depends(coach_session),
                     services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        editor.return_to_roster(payload.player_id)
        return _draft_response(draft_id, editor, services.store)


@app.post("/api/coach/tactics/drafts/{draft_id}/save")
def save_draft(draft_id: str, session: SessionContext = Depends(coach_session),
               services: Services = Depends(get_services)):
    with services.drafts.edit(session, draft_id) as editor:
        tactics_id = editor.save(services.store)
        body = _draft_response(draft_id, editor, services.store)
    body["id"] = tactics_id
    return body


@app.delete("/api/coach/tactics/drafts/{draft_id}")
def close_draft(draft_id: str, session: SessionContext = Depends(coach_session),
                services: Services = Depends(get_services)):
    services.drafts.close(session, draft_id)
    return {"message": "Draft closed"}


@app.delete("/api/coach/tactics/{tactics_id}")
def delete_tactics(tactics_id: str, confirm: bool = False, session: SessionContext = Depends(coach_session),
                   services: Services = Depends(get_services)):
    if not confirm:
        raise ConfirmationRequiredError("Are you sure you want to delete these tactics?")
    if not services.store.delete("tactics", tactics_id):
        raise NotFoundError("Tactics not found")
    return {"message": "Tactics deleted"}


# ----------------------
# Admin
# ----------------------

@app.get("/api/admin/dashboard")
def admin_dashboard(session: SessionContext = Depends(admin_session), services: Services = Depends(get_services)):
    return admin.dashboard(services.store)


@app.get("/api/admin/{collection}")
def admin_list(collection: str, session: SessionContext = Depends(admin_session),
               services: Services = Depends(get_services)):
    return {"items": admin.list_items(services.store, collection)}


@app.post("/api/admin/{collection}", status_code=201)
def admin_create(collection: str, payload: Dict[str, Any] = Body(...),
                 session: SessionContext = Depends(admin_session), services: Services = Depends(get_services)):
    return {"id": admin.create_item(services.store, collection, payload)}


@app.put("/api/admin/{collection}/{doc_id}")
def admin_update(collection: str, doc_id: str, payload: Dict[str, Any] = Body(...),
                 session: SessionContext = Depends(admin_session), services: Services = Depends(get_services)):
    admin.update_item(services.store, collection, doc_id, payload)
    return {"id": doc_id}


@app.delete("/api/admin/{collection}/{doc_id}")
def admin_delete(collection: str, doc_id: str, confirm: bool = False,
                 session: SessionContext = Depends(admin_session), services: Services = Depends(get_services)):
    admin.delete_item(services.store, collection, doc_id, confirm)
    return {"message": "Deleted"}


@app.post("/api/admin/matches/{match_id}/goal-scorers")
def admin_add_goal_scorer(match_id: str, payload: GoalScorerIn,
                          session: SessionContext = Depends(admin_session),
                          services: Services = Depends(get_services)):
    return {"goalScorers": admin.record_goal_scorer(services.store, match_id, payload)}


@app.delete("/api/admin/matches/{match_id}/goal-scorers/{index}")
def admin_remove_goal_scorer(match_id: str, index: int,
                             session: SessionContext = Depends(admin_session),
                             services: Services = Depends(get_services)):
    return {"goalScorers": admin.delete_goal_scorer(services.store, match_id, index)}


@app.get("/test")
def test_database():
    """Backend and database diagnostics."""
    report = {
        "backend": "✅ Running",
        "database": "❌ Not Configured",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return report

    report["connection_status"] = "Connected"
    try:
        report["collections"] = database.db.list_collection_names()[:10]
        report["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        logger.error(f"Database diagnostics failed: {e}")
        report["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return report


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
