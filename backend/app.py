import logging
import uuid
from pathlib import Path
from typing import List

from fastapi import BackgroundTasks, FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from config import ALLOWED_ORIGINS, GEMINI_MODEL, LOG_LEVEL
from exceptions import ConfigurationError, GenerationError, PublishError
from generation import GeminiClient, dedupe_citations, generate_blueprints
from models import GroundingChunk, ProjectBlueprint
from publishing import GitHubPublisher
from view_state import (
    SessionStore,
    begin_publish,
    close_publish_modal,
    generation_failed,
    generation_succeeded,
    go_back,
    go_home,
    open_publish_modal,
    publish_failed,
    publish_succeeded,
    select_project,
    submit_query,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

SESSION_COOKIE = "neuralforge_session"

GENERATION_FAILED_MESSAGE = (
    "Could not generate ideas. Please try a specific topic like 'Computer Vision' or 'LLMs'."
)
PUBLISH_FAILED_MESSAGE = "Failed to publish to GitHub"

EXAMPLE_TOPICS = [
    ("Transformer Agents", "Transformer Agents"),
    ("ControlNet", "Stable Diffusion ControlNet"),
    ("RAG Systems", "RAG with LangChain"),
]


# -----------------------------
# FastAPI app
# -----------------------------
app = FastAPI(title="NeuralForge", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

app.state.sessions = SessionStore()
app.state.gemini_client = None  # None -> GeminiClient() from env per query
app.state.publisher_factory = GitHubPublisher


def difficulty_class(difficulty: str) -> str:
    # Values outside the three levels are displayed as given, with a neutral badge.
    return {
        "beginner": "badge-beginner",
        "intermediate": "badge-intermediate",
        "advanced": "badge-advanced",
    }.get((difficulty or "").strip().lower(), "badge-other")


# -----------------------------
# API models
# -----------------------------
class GenerateRequest(BaseModel):
    topic: str


class GenerateResponse(BaseModel):
    projects: List[ProjectBlueprint]
    citations: List[GroundingChunk]
    displayCitations: List[GroundingChunk]


class PublishRequest(BaseModel):
    token: str
    project: ProjectBlueprint


class PublishResponse(BaseModel):
    url: str


# -----------------------------
# Helpers
# -----------------------------
def _session_id(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE) or uuid.uuid4().hex


def _redirect_home(session_id: str) -> RedirectResponse:
    resp = RedirectResponse("/", status_code=303)
    resp.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return resp


def _gemini_client() -> GeminiClient:
    return app.state.gemini_client or GeminiClient()


async def _run_generation(session_id: str, request_id: str, topic: str) -> None:
    sessions: SessionStore = app.state.sessions
    try:
        result = await generate_blueprints(topic, client=_gemini_client())
    except ConfigurationError as e:
        logger.error(f"[generate] configuration error: {e}")
        sessions.update(session_id, generation_failed, request_id, str(e))
    except GenerationError as e:
        logger.error(f"[generate] {type(e).__name__}: {e}")
        sessions.update(session_id, generation_failed, request_id, GENERATION_FAILED_MESSAGE)
    except Exception:
        logger.exception("[generate] unexpected failure")
        sessions.update(session_id, generation_failed, request_id, GENERATION_FAILED_MESSAGE)
    else:
        sessions.update(session_id, generation_succeeded, request_id, result)


# -----------------------------
# Page routes
# -----------------------------
@app.get("/")
def index(request: Request):
    session_id = _session_id(request)
    state = app.state.sessions.get(session_id)
    resp = templates.TemplateResponse(
        request,
        "index.html",
        {
            "state": state,
            "project": state.selected,
            "sources": dedupe_citations(state.citations),
            "examples": EXAMPLE_TOPICS,
            "difficulty_class": difficulty_class,
            "model_name": GEMINI_MODEL,
        },
    )
    resp.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return resp


@app.post("/search")
def search(request: Request, background_tasks: BackgroundTasks, query: str = Form("")):
    session_id = _session_id(request)
    request_id = uuid.uuid4().hex
    state = app.state.sessions.update(session_id, submit_query, query, request_id)
    if state.view == "loading" and state.pending_request == request_id:
        # Not cancelled if the user navigates away; a stale reply is dropped on arrival.
        background_tasks.add_task(_run_generation, session_id, request_id, state.query)
    return _redirect_home(session_id)


@app.post("/projects/{project_id}")
def select(request: Request, project_id: str):
    session_id = _session_id(request)
    app.state.sessions.update(session_id, select_project, project_id)
    return _redirect_home(session_id)


@app.post("/back")
def back(request: Request):
    session_id = _session_id(request)
    app.state.sessions.update(session_id, go_back)
    return _redirect_home(session_id)


@app.post("/home")
def home(request: Request):
    session_id = _session_id(request)
    app.state.sessions.update(session_id, go_home)
    return _redirect_home(session_id)


@app.post("/publish/open")
def publish_open(request: Request):
    session_id = _session_id(request)
    app.state.sessions.update(session_id, open_publish_modal)
    return _redirect_home(session_id)


@app.post("/publish/close")
def publish_close(request: Request):
    session_id = _session_id(request)
    app.state.sessions.update(session_id, close_publish_modal)
    return _redirect_home(session_id)


@app.post("/publish")
async def publish(request: Request, token: str = Form("")):
    session_id = _session_id(request)
    sessions: SessionStore = app.state.sessions
    state = sessions.update(session_id, begin_publish, token)
    if state.modal.phase != "publishing" or state.selected is None:
        return _redirect_home(session_id)

    publisher = app.state.publisher_factory(state.modal.token.get_secret_value())
    try:
        url = await publisher.publish(state.selected)
    except PublishError as e:
        sessions.update(session_id, publish_failed, str(e) or PUBLISH_FAILED_MESSAGE)
    except Exception:
        logger.exception("[publish] unexpected failure")
        sessions.update(session_id, publish_failed, PUBLISH_FAILED_MESSAGE)
    else:
        sessions.update(session_id, publish_succeeded, url)
    return _redirect_home(session_id)


# -----------------------------
# JSON routes
# -----------------------------
@app.get("/health")
def health():
    return {"ok": True, "model": GEMINI_MODEL}


@app.post("/api/generate", response_model=GenerateResponse)
async def api_generate(body: GenerateRequest):
    topic = (body.topic or "").strip()
    if not topic:
        raise HTTPException(status_code=400, detail="Provide a non-empty topic.")

    try:
        result = await generate_blueprints(topic, client=_gemini_client())
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except GenerationError as e:
        logger.error(f"[api/generate] {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail=GENERATION_FAILED_MESSAGE)

    return GenerateResponse(
        projects=list(result.projects),
        citations=list(result.citations),
        displayCitations=dedupe_citations(result.citations),
    )


@app.post("/api/publish", response_model=PublishResponse)
async def api_publish(body: PublishRequest):
    try:
        url = await app.state.publisher_factory(body.token).publish(body.project)
    except PublishError as e:
        raise HTTPException(status_code=400, detail=str(e) or PUBLISH_FAILED_MESSAGE)
    return PublishResponse(url=url)
