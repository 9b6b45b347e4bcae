"""Topic -> prompt -> Gemini (with Google Search grounding) -> normalized blueprints.

The model is asked for raw JSON but frequently wraps it in a markdown fence
anyway, and it drops fields it has nothing to say about. Everything after the
network call is therefore a narrow, best-effort parsing stage: strip the fence
if there is one, `json.loads`, then fill every missing field with a fixed
default so the UI never has to guess at the record shape.
"""

import json
import logging
import re
import time
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple
from urllib.parse import urlsplit

from google import genai
from google.genai import types

from config import GEMINI_API_KEY, GEMINI_MODEL, GEMINI_TEMPERATURE, GEMINI_TIMEOUT, MAX_CITATIONS
from exceptions import ConfigurationError, GenerationError, ParsingError
from models import (
    Dataset,
    GenerationResult,
    GroundingChunk,
    ModelReference,
    PaperReference,
    ProjectBlueprint,
    WebSource,
)

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
UNKNOWN_PAPER = "Unknown Paper"
NO_CODE = "# No code provided"

LINK_SCHEMES = ("http", "https")


# -----------------------------
# LLM prompt
# -----------------------------
PROJECT_PROMPT_TEMPLATE = """Act as a Senior Machine Learning Engineer and Researcher.
The user is interested in: "{topic}".

Your goal is to suggest exactly 3 distinct, high-value, and interesting project ideas that the user can build.
These projects should leverage actual, existing models on Hugging Face and relate to real research papers.

For each project, provide:
1. A catchy Title.
2. A concise Description.
3. Difficulty level (Beginner, Intermediate, Advanced).
4. The specific ML Domain (e.g., NLP, CV, RL, Audio).
5. The name of a key Research Paper related to the technique (approximate title is fine).
6. A specific, existing Hugging Face Model ID that is relevant (e.g., "stabilityai/stable-diffusion-3-medium" or "meta-llama/Meta-Llama-3-8B") and the task it performs.
7. 4-5 high-level Implementation Steps.
8. Recommended Tech Stack (libraries like PyTorch, Transformers, Diffusers, Gradio, etc.).
9. A short, valid Python code snippet using the 'transformers', 'diffusers' or 'torch' library to initialize the model or pipeline.
10. 2 relevant datasets from Hugging Face Datasets or Kaggle that would be perfect for training, fine-tuning, or testing this specific project.

Return a single JSON object with a key "projects" containing an array of objects shaped like:
{{
  "title": "...",
  "description": "...",
  "difficulty": "Beginner" | "Intermediate" | "Advanced",
  "domain": "...",
  "paper": {{ "title": "...", "url": "...", "authors": "..." }},
  "huggingFaceModel": {{ "modelId": "...", "task": "..." }},
  "implementationSteps": ["...", "..."],
  "techStack": ["...", "..."],
  "pythonSnippet": "...",
  "datasets": [{{ "name": "...", "url": "...", "source": "Hugging Face" | "Kaggle", "description": "..." }}]
}}
If you know a specific dataset or paper URL, provide it, otherwise leave it empty.

Do not use markdown formatting or code fences (no ```json). Return only the raw JSON string.
"""


def build_prompt(topic: str) -> str:
    """Instruction text for one batch of ideas, with the topic embedded as given.

    Callers trim the topic and reject blank ones before getting here.
    """
    return PROJECT_PROMPT_TEMPLATE.format(topic=topic)


# -----------------------------
# Gemini client
# -----------------------------
class RawGeneration(NamedTuple):
    text: str
    citations: Tuple[GroundingChunk, ...]


def _citations_from(response: Any) -> Tuple[GroundingChunk, ...]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ()
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    out: List[GroundingChunk] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = safe_url(getattr(web, "uri", None))
        if uri:
            out.append(GroundingChunk(web=WebSource(uri=uri, title=getattr(web, "title", None) or uri)))
        else:
            out.append(GroundingChunk())
    return tuple(out)


class GeminiClient:
    """One grounded `generate_content` call per query. No retries."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Any = None,
    ):
        """
        Args:
            api_key:     Overrides GEMINI_API_KEY.
            model:       Overrides GEMINI_MODEL.
            temperature: Overrides GEMINI_TEMPERATURE (0.7).
            client:      Pre-built `genai.Client` (or a stand-in exposing
                         `.aio.models.generate_content`). Built lazily otherwise.
        """
        self.api_key = GEMINI_API_KEY if api_key is None else api_key.strip()
        self.model = model or GEMINI_MODEL
        self.temperature = GEMINI_TEMPERATURE if temperature is None else temperature
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(GEMINI_TIMEOUT * 1000)),
            )
        return self._client

    async def generate(self, prompt: str) -> RawGeneration:
        """Send the prompt with the Google Search tool enabled.

        Raises:
            ConfigurationError: No API key; raised before any client is built.
            GenerationError:    SDK/network failure or an empty reply.
        """
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set on the server.")

        config = types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())],
            temperature=self.temperature,
        )
        try:
            response = await self._get_client().aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
            text = response.text
        except Exception as e:
            logger.error(f"[gemini] generate_content failed: {e}")
            raise GenerationError(f"Gemini request failed: {e}", details={"model": self.model}) from e

        if not text:
            raise GenerationError("Gemini returned an empty reply.", details={"model": self.model})
        return RawGeneration(text=text, citations=_citations_from(response))


# -----------------------------
# Robust JSON parsing for LLM responses
# -----------------------------
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", flags=re.S | re.I)


def extract_json_text(text: str) -> str:
    """Interior of the first ``` fence (optionally tagged json), else the text itself."""
    text = text or ""
    m = _FENCE_RE.search(text)
    if m:
        text = m.group(1)
    return text.strip()


def parse_projects_payload(text: str) -> List[Dict[str, Any]]:
    candidate = extract_json_text(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParsingError(f"Model did not return JSON: {e}", raw_text=text) from e

    projects = parsed.get("projects") if isinstance(parsed, dict) else None
    if not isinstance(projects, list):
        raise ParsingError("Model reply has no 'projects' array.", raw_text=text)
    if not all(isinstance(p, dict) for p in projects):
        raise ParsingError("Every entry in 'projects' must be an object.", raw_text=text)
    return projects


# -----------------------------
# Normalization
# -----------------------------
def _text(value: Any, default: str = "") -> str:
    if not value:
        return default
    return value if isinstance(value, str) else str(value)


def safe_url(value: Any) -> str:
    """The value if it is an absolute http(s) URL, else "".

    Model output ends up in href attributes, so anything else (javascript:,
    data:, relative paths) is dropped.
    """
    url = _text(value).strip()
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    if parts.scheme.lower() not in LINK_SCHEMES or not parts.netloc:
        return ""
    return url


def _as_list(value: Any) -> list:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _text_tuple(value: Any) -> Tuple[str, ...]:
    return tuple(_text(v) for v in _as_list(value))


def _normalize_model(value: Any) -> ModelReference:
    if isinstance(value, str) and value:
        return ModelReference(modelId=value, task=UNKNOWN)
    if not isinstance(value, dict):
        return ModelReference(modelId=UNKNOWN, task=UNKNOWN)
    return ModelReference(
        modelId=_text(value.get("modelId"), UNKNOWN),
        task=_text(value.get("task"), UNKNOWN),
    )


def _normalize_paper(value: Any) -> PaperReference:
    if isinstance(value, str) and value:
        return PaperReference(title=value)
    if not isinstance(value, dict):
        return PaperReference(title=UNKNOWN_PAPER)

    authors = value.get("authors")
    if isinstance(authors, (list, tuple)):
        authors = ", ".join(_text(a) for a in authors if a)
    return PaperReference(
        title=_text(value.get("title"), UNKNOWN_PAPER),
        url=safe_url(value.get("url")) or None,
        authors=_text(authors) or None,
    )


def _normalize_dataset(value: Any) -> Dataset:
    if not isinstance(value, dict):
        return Dataset(name=_text(value))
    return Dataset(
        name=_text(value.get("name")),
        url=safe_url(value.get("url")),
        source=_text(value.get("source"), "Other"),
        description=_text(value.get("description")),
    )


def normalize_project(raw: Dict[str, Any], project_id: str) -> ProjectBlueprint:
    """Fixed-schema blueprint from one parsed `projects` entry.

    Absent or falsy fields get the documented default. Difficulty and dataset
    source are passed through verbatim, even when outside their usual values.
    """
    return ProjectBlueprint(
        id=project_id,
        title=_text(raw.get("title")),
        description=_text(raw.get("description")),
        difficulty=_text(raw.get("difficulty")),
        domain=_text(raw.get("domain")),
        paper=_normalize_paper(raw.get("paper")),
        huggingFaceModel=_normalize_model(raw.get("huggingFaceModel")),
        datasets=tuple(_normalize_dataset(d) for d in _as_list(raw.get("datasets"))),
        implementationSteps=_text_tuple(raw.get("implementationSteps")),
        techStack=_text_tuple(raw.get("techStack")),
        pythonSnippet=_text(raw.get("pythonSnippet"), NO_CODE),
    )


def normalize_projects(raw_text: str, batch_ts: Optional[int] = None) -> Tuple[ProjectBlueprint, ...]:
    """Parse a model reply into blueprints, preserving the model's order.

    Ids are `proj_<batch_ts>_<index>`, unique within the batch.
    """
    projects = parse_projects_payload(raw_text)
    ts = int(time.time() * 1000) if batch_ts is None else batch_ts
    return tuple(normalize_project(p, f"proj_{ts}_{i}") for i, p in enumerate(projects))


def dedupe_citations(chunks: Iterable[GroundingChunk], limit: int = MAX_CITATIONS) -> List[GroundingChunk]:
    """Web citations for display: first occurrence per URI, at most `limit`."""
    seen = set()
    out = []
    for chunk in chunks:
        if chunk.web is None or chunk.web.uri in seen:
            continue
        seen.add(chunk.web.uri)
        out.append(chunk)
        if len(out) >= limit:
            break
    return out


async def generate_blueprints(topic: str, client: Optional[GeminiClient] = None) -> GenerationResult:
    """Build the prompt, call Gemini once, normalize the reply.

    Raises ConfigurationError, GenerationError or ParsingError; never retries.
    """
    client = client or GeminiClient()
    raw = await client.generate(build_prompt(topic))
    try:
        projects = normalize_projects(raw.text)
    except ParsingError:
        logger.warning(f"[gemini] unparseable reply for topic {topic!r}: {raw.text[:300]!r}")
        raise
    logger.info(f"[gemini] {len(projects)} projects, {len(raw.citations)} citations for topic {topic!r}")
    return GenerationResult(projects=projects, citations=raw.citations)
