"""Prompt building, Gemini call, fence stripping, normalization, citations."""

import json

import pytest

from conftest import fenced, make_project, make_sdk_client, web_chunk
from exceptions import ConfigurationError, GenerationError, ParsingError
from generation import (
    NO_CODE,
    UNKNOWN_PAPER,
    GeminiClient,
    build_prompt,
    dedupe_citations,
    extract_json_text,
    generate_blueprints,
    normalize_project,
    normalize_projects,
    parse_projects_payload,
    safe_url,
)
from models import GroundingChunk, WebSource


# ── Prompt builder ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("topic", ["Audio Generation", "Medical Imaging", "RAG with LangChain", "GNNs für Chemie", "  Audio Generation  "])
def test_prompt_contains_topic_and_required_fields(topic):
    prompt = build_prompt(topic)
    assert f'"{topic}"' in prompt
    for i in range(1, 11):
        assert f"\n{i}. " in prompt
    assert '"projects"' in prompt
    assert "exactly 3" in prompt


def test_prompt_spells_out_schema_and_forbids_fences():
    prompt = build_prompt("Audio Generation")
    for key in ("huggingFaceModel", "implementationSteps", "techStack", "pythonSnippet", "datasets", "paper"):
        assert f'"{key}"' in prompt
    assert "code fences" in prompt


# ── Fence stripping ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("tag", ["json", ""])
def test_extract_json_text_strips_fences(tag):
    body = '{"projects": []}'
    assert extract_json_text(f"```{tag}\n{body}\n```") == body


def test_extract_json_text_ignores_prose_around_fence():
    body = json.dumps({"projects": [make_project()]})
    assert extract_json_text(f"Sure!\n```json\n{body}\n```\nLet me know.") == body


def test_extract_json_text_unfenced_is_verbatim():
    body = '{"projects": [{"title": "x"}]}'
    assert extract_json_text(body) == body
    assert extract_json_text(f"  \n{body}\n ") == body


# ── Parsing ──────────────────────────────────────────────────────────────────

def test_parse_invalid_json_raises_parsing_error():
    with pytest.raises(ParsingError) as exc:
        parse_projects_payload("I could not find anything, sorry.")
    assert isinstance(exc.value, GenerationError)
    assert exc.value.raw_text == "I could not find anything, sorry."


@pytest.mark.parametrize("payload", ['{"ideas": []}', '[1, 2, 3]', '{"projects": "none"}', '{"projects": [1]}'])
def test_parse_without_projects_array_raises(payload):
    with pytest.raises(ParsingError):
        parse_projects_payload(payload)


def test_parse_empty_projects_is_allowed():
    assert parse_projects_payload('{"projects": []}') == []


# ── Normalization ────────────────────────────────────────────────────────────

def test_missing_fields_get_defaults():
    bp = normalize_project({"title": "Bare"}, "proj_1_0")
    assert bp.id == "proj_1_0"
    assert bp.title == "Bare"
    assert bp.huggingFaceModel.modelId == "unknown"
    assert bp.huggingFaceModel.task == "unknown"
    assert bp.paper.title == UNKNOWN_PAPER
    assert bp.paper.url is None
    assert bp.implementationSteps == ()
    assert bp.techStack == ()
    assert bp.datasets == ()
    assert bp.pythonSnippet == NO_CODE


def test_falsy_fields_get_defaults():
    raw = make_project(huggingFaceModel=None, paper={}, implementationSteps=[], pythonSnippet="", techStack=None, datasets=[])
    bp = normalize_project(raw, "p")
    assert bp.huggingFaceModel.modelId == "unknown"
    assert bp.paper.title == UNKNOWN_PAPER
    assert bp.implementationSteps == ()
    assert bp.pythonSnippet == NO_CODE


def test_partial_nested_objects_are_completed():
    raw = make_project(
        huggingFaceModel={"modelId": "openai/whisper-small"},
        paper={"url": "https://arxiv.org/abs/2212.04356", "authors": ["Radford", "Kim"]},
        datasets=[{"name": "LibriSpeech"}],
    )
    bp = normalize_project(raw, "p")
    assert bp.huggingFaceModel.modelId == "openai/whisper-small"
    assert bp.huggingFaceModel.task == "unknown"
    assert bp.paper.title == UNKNOWN_PAPER
    assert bp.paper.url == "https://arxiv.org/abs/2212.04356"
    assert bp.paper.authors == "Radford, Kim"
    assert bp.datasets[0].name == "LibriSpeech"
    assert bp.datasets[0].url == ""
    assert bp.datasets[0].source == "Other"


def test_enum_like_values_pass_through():
    raw = make_project(difficulty="Expert", datasets=[{"name": "x", "source": "GitHub", "url": "", "description": ""}])
    bp = normalize_project(raw, "p")
    assert bp.difficulty == "Expert"
    assert bp.datasets[0].source == "GitHub"


def test_scalar_where_list_expected_is_wrapped():
    bp = normalize_project(make_project(implementationSteps="Just train it", techStack="PyTorch"), "p")
    assert bp.implementationSteps == ("Just train it",)
    assert bp.techStack == ("PyTorch",)


def test_renormalizing_output_keeps_defaults():
    first = normalize_project({"title": "Bare"}, "a")
    second = normalize_project(first.model_dump(), "b")
    assert second.model_copy(update={"id": "a"}) == first
    assert second.paper.title == UNKNOWN_PAPER
    assert second.pythonSnippet == NO_CODE


def test_renormalizing_full_blueprint_is_stable(blueprint):
    again = normalize_project(blueprint.model_dump(), blueprint.id)
    assert again == blueprint


@pytest.mark.parametrize("url", [
    "javascript:alert(document.cookie)",
    " JavaScript:alert(1)",
    "data:text/html;base64,PHNjcmlwdD4=",
    "/relative/path",
    "arxiv.org/abs/1706.03762",
    "https://",
])
def test_unsafe_links_are_dropped(url):
    raw = make_project(
        paper={"title": "Attention Is All You Need", "url": url},
        datasets=[{"name": "WMT14", "url": url, "source": "Kaggle"}],
    )
    bp = normalize_project(raw, "p")
    assert bp.paper.url is None
    assert bp.datasets[0].url == ""
    assert bp.datasets[0].name == "WMT14"


def test_http_links_are_kept():
    assert safe_url("http://example.com/data") == "http://example.com/data"
    assert safe_url("HTTPS://arxiv.org/abs/1706.03762") == "HTTPS://arxiv.org/abs/1706.03762"
    assert safe_url(None) == ""


def test_ids_unique_within_batch_and_order_preserved():
    reply = json.dumps({"projects": [make_project(i) for i in range(5)]})
    projects = normalize_projects(reply, batch_ts=1700000000000)
    ids = [p.id for p in projects]
    assert len(set(ids)) == 5
    assert ids[0] == "proj_1700000000000_0"
    assert [p.title for p in projects] == [f"Audio Project {i}" for i in range(5)]


def test_blueprints_are_immutable(blueprint):
    with pytest.raises(Exception):
        blueprint.title = "changed"


# ── Citations ────────────────────────────────────────────────────────────────

def _chunk(uri):
    return GroundingChunk(web=WebSource(uri=uri, title=uri))


def test_dedupe_citations_caps_and_dedupes():
    chunks = [_chunk(f"https://example.com/{i % 3}") for i in range(10)] + [_chunk(f"https://other.com/{i}") for i in range(5)]
    shown = dedupe_citations(chunks)
    uris = [c.web.uri for c in shown]
    assert len(shown) <= 4
    assert len(uris) == len(set(uris))
    assert uris[:3] == ["https://example.com/0", "https://example.com/1", "https://example.com/2"]


def test_dedupe_citations_skips_chunks_without_web():
    shown = dedupe_citations([GroundingChunk(), _chunk("https://a.com"), GroundingChunk()])
    assert [c.web.uri for c in shown] == ["https://a.com"]


# ── Gemini client ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missing_api_key_fails_before_network():
    sdk = make_sdk_client(text="{}")
    client = GeminiClient(api_key="", client=sdk)
    with pytest.raises(ConfigurationError):
        await client.generate("prompt")
    sdk.aio.models.generate_content.assert_not_called()


@pytest.mark.asyncio
async def test_generate_enables_search_and_temperature(gemini, sdk_client):
    raw = await gemini.generate("prompt text")
    kwargs = sdk_client.aio.models.generate_content.call_args.kwargs
    assert kwargs["contents"] == "prompt text"
    assert kwargs["config"].temperature == 0.7
    assert kwargs["config"].tools[0].google_search is not None
    assert [c.web.uri for c in raw.citations] == [
        "https://arxiv.org/abs/2209.03143",
        "https://huggingface.co/facebook/musicgen-small",
    ]
    assert sdk_client.aio.models.generate_content.await_count == 1


@pytest.mark.asyncio
async def test_sdk_failure_wraps_cause_without_retry():
    cause = ConnectionError("network down")
    sdk = make_sdk_client(error=cause)
    with pytest.raises(GenerationError) as exc:
        await GeminiClient(api_key="k", client=sdk).generate("prompt")
    assert exc.value.__cause__ is cause
    assert sdk.aio.models.generate_content.await_count == 1


@pytest.mark.asyncio
async def test_empty_reply_is_generation_error():
    with pytest.raises(GenerationError):
        await GeminiClient(api_key="k", client=make_sdk_client(text="")).generate("prompt")


@pytest.mark.asyncio
async def test_missing_grounding_metadata_gives_no_citations():
    sdk = make_sdk_client(text='{"projects": []}')
    sdk.aio.models.generate_content.return_value.candidates = []
    raw = await GeminiClient(api_key="k", client=sdk).generate("prompt")
    assert raw.citations == ()


# ── End to end ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audio_generation_missing_datasets_default_to_empty(gemini, sdk_client):
    result = await generate_blueprints("Audio Generation", client=gemini)
    assert len(result.projects) == 3
    assert all(p.datasets == () for p in result.projects)
    assert len({p.id for p in result.projects}) == 3
    assert result.model_dump(mode="json")["projects"][0]["datasets"] == []
    assert '"Audio Generation"' in sdk_client.aio.models.generate_content.call_args.kwargs["contents"]


@pytest.mark.asyncio
async def test_citations_returned_unmodified():
    chunks = [web_chunk("https://a.com"), web_chunk("https://a.com"), web_chunk("https://b.com")]
    sdk = make_sdk_client(text=fenced({"projects": [make_project()]}, tag=""), chunks=chunks)
    result = await generate_blueprints("LLMs", client=GeminiClient(api_key="k", client=sdk))
    assert [c.web.uri for c in result.citations] == ["https://a.com", "https://a.com", "https://b.com"]


@pytest.mark.asyncio
async def test_unparseable_reply_raises_parsing_error():
    sdk = make_sdk_client(text="Here are some ideas: 1. build a chatbot")
    with pytest.raises(ParsingError):
        await generate_blueprints("LLMs", client=GeminiClient(api_key="k", client=sdk))


@pytest.mark.asyncio
async def test_non_http_grounding_uris_are_not_cited():
    chunks = [web_chunk("javascript:alert(1)", "Evil"), web_chunk("https://b.com", "B")]
    sdk = make_sdk_client(text='{"projects": []}', chunks=chunks)
    raw = await GeminiClient(api_key="k", client=sdk).generate("prompt")
    assert raw.citations[0].web is None
    assert [c.web.uri for c in dedupe_citations(raw.citations)] == ["https://b.com"]
