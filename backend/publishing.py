"""Export a blueprint as a new GitHub repository.

Two REST calls: create the repository under the token's user, then commit the
README and the starter code through the contents API. Nothing is rolled back:
if a file commit fails after the repository was created, the (partial)
repository stays on GitHub and the error is reported to the user.
"""

import base64
import logging
import re
from typing import Any, Dict, Optional

import httpx

from config import GITHUB_API_URL, GITHUB_PRIVATE_REPOS, GITHUB_TIMEOUT
from exceptions import PublishError
from models import ProjectBlueprint

logger = logging.getLogger(__name__)

DEFAULT_REPO_NAME = "ml-project"
MAX_REPO_NAME = 100


def repo_name_for(blueprint: ProjectBlueprint) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (blueprint.title or "").lower()).strip("-")
    slug = slug[:MAX_REPO_NAME].strip("-")
    return slug or DEFAULT_REPO_NAME


def render_readme(blueprint: ProjectBlueprint) -> str:
    lines = [
        f"# {blueprint.title or 'ML Project'}",
        "",
        blueprint.description,
        "",
        f"- **Difficulty:** {blueprint.difficulty}",
        f"- **Domain:** {blueprint.domain}",
        "",
        "## Research",
        "",
    ]

    paper = blueprint.paper
    paper_line = f"[{paper.title}]({paper.url})" if paper.url else paper.title
    if paper.authors:
        paper_line += f" ({paper.authors})"
    lines.append(paper_line)

    model = blueprint.huggingFaceModel
    lines += [
        "",
        "## Model",
        "",
        f"[`{model.modelId}`]({model.hub_url}) ({model.task})",
    ]

    if blueprint.datasets:
        lines += ["", "## Datasets", ""]
        for ds in blueprint.datasets:
            name = f"[{ds.name}]({ds.url})" if ds.url else ds.name
            entry = f"- {name} ({ds.source})"
            if ds.description:
                entry += f": {ds.description}"
            lines.append(entry)

    if blueprint.implementationSteps:
        lines += ["", "## Implementation Steps", ""]
        lines += [f"{i}. {step}" for i, step in enumerate(blueprint.implementationSteps, start=1)]

    if blueprint.techStack:
        lines += ["", "## Tech Stack", ""]
        lines += [f"- {tech}" for tech in blueprint.techStack]

    lines += ["", "## Getting Started", "", "Starter code lives in `main.py`.", ""]
    return "\n".join(lines)


def _error_message(resp: httpx.Response) -> str:
    """GitHub's own message, verbatim, with any field-level details appended."""
    try:
        body = resp.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or not body.get("message"):
        return f"GitHub request failed (HTTP {resp.status_code})"

    message = str(body["message"])
    details = [
        str(err.get("message"))
        for err in (body.get("errors") or [])
        if isinstance(err, dict) and err.get("message")
    ]
    if details:
        message = f"{message} {'; '.join(details)}"
    return message


class GitHubPublisher:
    """Creates a repository and commits files using a personal access token."""

    def __init__(
        self,
        token: str,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        private: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = (token or "").strip()
        self.api_url = (api_url or GITHUB_API_URL).rstrip("/")
        self.timeout = GITHUB_TIMEOUT if timeout is None else timeout
        self.private = GITHUB_PRIVATE_REPOS if private is None else private
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "NeuralForge",
        }
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = await client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise PublishError(f"Could not reach GitHub: {e}") from e

        if r.status_code >= 400:
            message = _error_message(r)
            logger.warning(f"[github] {method} {path} -> {r.status_code}: {message}")
            raise PublishError(message, status_code=r.status_code)
        return r.json()

    async def _put_file(self, client: httpx.AsyncClient, full_name: str, path: str, content: str, message: str) -> None:
        await self._request(
            client,
            "PUT",
            f"/repos/{full_name}/contents/{path}",
            {
                "message": message,
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            },
        )

    async def publish(self, blueprint: ProjectBlueprint) -> str:
        """Create the repository, push README.md and main.py, return its html_url."""
        if not self.token:
            raise PublishError("A GitHub personal access token is required.")

        name = repo_name_for(blueprint)
        async with self._client() as client:
            repo = await self._request(
                client,
                "POST",
                "/user/repos",
                {
                    "name": name,
                    "description": (blueprint.description or "")[:350],
                    "private": self.private,
                },
            )
            full_name = repo.get("full_name") or f"{repo['owner']['login']}/{repo['name']}"
            url = repo.get("html_url") or f"https://github.com/{full_name}"
            logger.info(f"[github] created {full_name}")

            try:
                await self._put_file(client, full_name, "README.md", render_readme(blueprint), "Add project README")
                await self._put_file(client, full_name, "main.py", blueprint.pythonSnippet, "Add starter code")
            except PublishError:
                logger.warning(f"[github] {full_name} was created but file commits failed; repository left in place")
                raise

        return url
