"""Organization response templates used as optional prompt context."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol

import structlog

from parley.moderation.sanitizer import sanitize

logger = structlog.get_logger(__name__)

_PREVIEW_CHARS = 200
_MIN_WORD_CHARS = 4


@dataclass
class ResponseTemplate:
    id: str
    name: str
    content: str
    description: str = ""
    status: str = "approved"


@dataclass
class TemplateMatch:
    template: ResponseTemplate
    score: float


class TemplateSource(Protocol):
    async def list_templates(self, organization_id: str) -> list[ResponseTemplate]: ...


class TemplateStore:
    """JSON file per organization under ``<base_dir>/<org id>.json``."""

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".parley" / "templates"
        self._base.mkdir(parents=True, exist_ok=True)

    def _path(self, organization_id: str) -> Path:
        return self._base / f"{organization_id}.json"

    def save(self, organization_id: str, templates: list[ResponseTemplate]) -> None:
        self._path(organization_id).write_text(
            json.dumps([asdict(t) for t in templates], indent=2)
        )

    async def list_templates(self, organization_id: str) -> list[ResponseTemplate]:
        path = self._path(organization_id)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            return []
        return [ResponseTemplate(**d) for d in data if isinstance(d, dict)]


def _trigger_words(text: str) -> list[str]:
    return [w for w in re.split(r"\s+", text.lower()) if len(w) >= _MIN_WORD_CHARS]


def score_template(template: ResponseTemplate, words: list[str]) -> float:
    """1 point per word found in name/description, 0.3 per word in the body."""
    header = f"{template.name} {template.description}".lower()
    body = template.content.lower()
    score = sum(1.0 for w in words if w in header)
    score += sum(0.3 for w in words if w in body)
    return score


class TemplateMatcher:
    """Keyword-scored retrieval over approved templates; best effort."""

    def __init__(self, source: TemplateSource, max_results: int = 2) -> None:
        self._source = source
        self._max_results = max_results

    async def match(self, organization_id: str, trigger_text: str) -> list[TemplateMatch]:
        words = _trigger_words(trigger_text)
        if not words:
            return []
        templates = await self._source.list_templates(organization_id)
        scored = [
            TemplateMatch(t, score_template(t, words))
            for t in templates
            if t.status == "approved"
        ]
        scored = [m for m in scored if m.score >= 1]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[: self._max_results]

    async def prompt_section(self, organization_id: str, trigger_text: str) -> str:
        """Render matches for the system prompt; ``""`` on no match or error."""
        try:
            matches = await self.match(organization_id, trigger_text)
        except Exception as exc:
            logger.warning("template lookup failed", organization_id=organization_id, error=str(exc))
            return ""
        if not matches:
            return ""

        lines = []
        for m in matches:
            content = sanitize(m.template.content)
            preview = content if len(content) <= _PREVIEW_CHARS else content[:_PREVIEW_CHARS] + "..."
            lines.append(f"- {sanitize(m.template.name)}: {preview}")
        return (
            "<response_templates>\n"
            "Relevant team response templates that may help:\n"
            + "\n".join(lines)
            + "\n\nUse these as inspiration and adapt them to the situation.\n"
            "</response_templates>"
        )
