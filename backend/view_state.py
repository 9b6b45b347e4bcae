"""Per-session UI state and the transitions between views.

idle -> loading -> results -> detail, plus the publish modal layered on top
of detail. Every transition is a pure function: it takes an `AppState` and
returns a new one (or the same object when the transition does not apply from
the current view). Route handlers are the only callers and the `SessionStore`
is the only place a state lives.
"""

import threading
import time
from typing import Callable, Literal, Optional, Tuple

from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict, SecretStr

from config import SESSION_MAX, SESSION_TTL
from models import GenerationResult, GroundingChunk, ProjectBlueprint

View = Literal["idle", "loading", "results", "detail"]
ModalPhase = Literal["token", "publishing", "success"]


class PublishModal(BaseModel):
    model_config = ConfigDict(frozen=True)

    open: bool = False
    phase: ModalPhase = "token"
    token: SecretStr = SecretStr("")  # session memory only, kept across close/open
    error: Optional[str] = None
    repo_url: Optional[str] = None


class AppState(BaseModel):
    model_config = ConfigDict(frozen=True)

    view: View = "idle"
    query: str = ""
    projects: Tuple[ProjectBlueprint, ...] = ()
    citations: Tuple[GroundingChunk, ...] = ()
    selected_id: Optional[str] = None
    error: Optional[str] = None
    pending_request: Optional[str] = None
    modal: PublishModal = PublishModal()

    @property
    def selected(self) -> Optional[ProjectBlueprint]:
        return find_project(self, self.selected_id)


def find_project(state: AppState, project_id: Optional[str]) -> Optional[ProjectBlueprint]:
    for project in state.projects:
        if project.id == project_id:
            return project
    return None


def _closed_modal(state: AppState) -> PublishModal:
    return PublishModal(token=state.modal.token)


# -----------------------------
# Search / results / detail
# -----------------------------
def submit_query(state: AppState, query: str, request_id: str) -> AppState:
    if state.view != "idle" or not (query or "").strip():
        return state
    return state.model_copy(update={
        "view": "loading",
        "query": query.strip(),
        "projects": (),
        "citations": (),
        "selected_id": None,
        "error": None,
        "pending_request": request_id,
    })


def generation_succeeded(state: AppState, request_id: str, result: GenerationResult) -> AppState:
    # A reply for a query the user has navigated away from is dropped.
    if state.view != "loading" or state.pending_request != request_id:
        return state
    return state.model_copy(update={
        "view": "results",
        "projects": result.projects,
        "citations": result.citations,
        "pending_request": None,
    })


def generation_failed(state: AppState, request_id: str, message: str) -> AppState:
    if state.view != "loading" or state.pending_request != request_id:
        return state
    return state.model_copy(update={
        "view": "idle",
        "projects": (),
        "citations": (),
        "error": message,
        "pending_request": None,
    })


def select_project(state: AppState, project_id: str) -> AppState:
    if state.view != "results" or find_project(state, project_id) is None:
        return state
    return state.model_copy(update={"view": "detail", "selected_id": project_id})


def go_back(state: AppState) -> AppState:
    if state.view == "detail":
        return state.model_copy(update={
            "view": "results",
            "selected_id": None,
            "modal": _closed_modal(state),
        })
    if state.view == "results":
        return state.model_copy(update={
            "view": "idle",
            "query": "",
            "projects": (),
            "citations": (),
            "error": None,
        })
    return state


def go_home(state: AppState) -> AppState:
    return AppState(modal=_closed_modal(state))


# -----------------------------
# Publish modal
# -----------------------------
def open_publish_modal(state: AppState) -> AppState:
    if state.view != "detail":
        return state
    return state.model_copy(update={"modal": _closed_modal(state).model_copy(update={"open": True})})


def begin_publish(state: AppState, token: str) -> AppState:
    modal = state.modal
    if state.view != "detail" or not modal.open or modal.phase != "token":
        return state
    # A blank field reuses the token already entered this session.
    token = (token or "").strip() or modal.token.get_secret_value()
    if not token:
        return state.model_copy(update={
            "modal": modal.model_copy(update={"error": "Enter a GitHub personal access token."}),
        })
    return state.model_copy(update={
        "modal": modal.model_copy(update={"phase": "publishing", "token": SecretStr(token), "error": None}),
    })


def publish_succeeded(state: AppState, repo_url: str) -> AppState:
    if not state.modal.open or state.modal.phase != "publishing":
        return state
    return state.model_copy(update={
        "modal": state.modal.model_copy(update={"phase": "success", "repo_url": repo_url, "error": None}),
    })


def publish_failed(state: AppState, message: str) -> AppState:
    if not state.modal.open or state.modal.phase != "publishing":
        return state
    return state.model_copy(update={
        "modal": state.modal.model_copy(update={"phase": "token", "error": message}),
    })


def close_publish_modal(state: AppState) -> AppState:
    if not state.modal.open:
        return state
    return state.model_copy(update={"modal": _closed_modal(state)})


# -----------------------------
# Session store
# -----------------------------
class SessionStore:
    """In-memory session id -> AppState map. Lost on restart.

    Bounded: past `maxsize` sessions the least recently used is evicted, and a
    session that has not changed for `ttl` seconds expires. Sync routes run in
    the threadpool while background generation writes from the event loop, so
    every read-modify-write happens under one lock.
    """

    def __init__(
        self,
        maxsize: Optional[int] = None,
        ttl: Optional[float] = None,
        timer: Optional[Callable[[], float]] = None,
    ):
        self._states: TTLCache = TTLCache(
            maxsize=SESSION_MAX if maxsize is None else maxsize,
            ttl=SESSION_TTL if ttl is None else ttl,
            timer=timer or time.monotonic,
        )
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._states.expire()
            return len(self._states)

    def get(self, session_id: str) -> AppState:
        with self._lock:
            return self._states.get(session_id) or AppState()

    def put(self, session_id: str, state: AppState) -> AppState:
        with self._lock:
            self._states[session_id] = state
        return state

    def update(self, session_id: str, transition: Callable[..., AppState], *args) -> AppState:
        with self._lock:
            current = self._states.get(session_id)
            state = transition(AppState() if current is None else current, *args)
            # No-op transitions on unknown sessions leave nothing behind.
            if current is not None or state != AppState():
                self._states[session_id] = state
            return state

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
