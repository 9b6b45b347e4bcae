"""Test fixtures: fake Gemini SDK client, sample model replies, blueprints.

All tests should use these fixtures for consistency.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from generation import GeminiClient, normalize_project


def make_project(n: int = 0, **overrides) -> dict:
    project = {
        "title": f"Audio Project {n}",
        "description": f"Build audio thing number {n}.",
        "difficulty": "Intermediate",
        "domain": "Audio",
        "paper": {"title": "AudioLM: a Language Modeling Approach to Audio Generation", "authors": "Borsos et al."},
        "huggingFaceModel": {"modelId": "facebook/musicgen-small", "task": "text-to-audio"},
        "implementationSteps": ["Load the model", "Write prompts", "Generate clips", "Build a Gradio demo"],
        "techStack": ["PyTorch", "Transformers", "Gradio"],
        "pythonSnippet": "from transformers import pipeline\npipe = pipeline('text-to-audio', 'facebook/musicgen-small')",
    }
    project.update(overrides)
    return project


def fenced(payload: dict, tag: str = "json") -> str:
    return f"Here you go:\n```{tag}\n{json.dumps(payload)}\n```\nEnjoy!"


def web_chunk(uri: str, title: str = "") -> SimpleNamespace:
    return SimpleNamespace(web=SimpleNamespace(uri=uri, title=title or uri))


def make_sdk_client(text=None, chunks=(), error=None) -> SimpleNamespace:
    """Stand-in for genai.Client exposing only aio.models.generate_content."""
    response = SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(grounding_metadata=SimpleNamespace(grounding_chunks=list(chunks)))],
    )
    generate = AsyncMock(return_value=response, side_effect=error)
    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate)))


@pytest.fixture
def three_projects_reply():
    """Fenced JSON with 3 projects, none of which lists datasets."""
    return fenced({"projects": [make_project(i) for i in range(3)]})


@pytest.fixture
def sdk_client(three_projects_reply):
    chunks = [
        web_chunk("https://arxiv.org/abs/2209.03143", "AudioLM"),
        web_chunk("https://huggingface.co/facebook/musicgen-small", "MusicGen"),
    ]
    return make_sdk_client(text=three_projects_reply, chunks=chunks)


@pytest.fixture
def gemini(sdk_client):
    return GeminiClient(api_key="test-key", client=sdk_client)


@pytest.fixture
def blueprint():
    return normalize_project(
        make_project(
            datasets=[{
                "name": "MusicCaps",
                "url": "https://huggingface.co/datasets/google/MusicCaps",
                "source": "Hugging Face",
                "description": "Music clips with captions",
            }],
        ),
        "proj_1700000000000_0",
    )
