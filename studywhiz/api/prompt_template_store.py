from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

import requests

from . import settings

_log = logging.getLogger(__name__)

ALL_SUBJECTS = "All Subjects"
USAGE_TYPES = ("chat", "grading", "explanation", "math_enhanced", "unified_math_chat")

SUPABASE_TABLE_PATH = "/rest/v1/prompt_templates"


class PromptTemplateStoreError(RuntimeError):
    pass


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class PromptTemplate:
    id: str
    name: str
    prompt_content: str
    usage_type: str = "chat"
    subject: Optional[str] = None
    description: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    is_active: bool = False
    auto_activate: bool = False
    priority: int = 0
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PromptTemplate":
        if not isinstance(raw, Mapping):
            raise PromptTemplateStoreError("prompt template must be an object")
        content = raw.get("prompt_content")
        if not isinstance(content, str):
            raise PromptTemplateStoreError(f"prompt template {raw.get('id')!r} has no prompt_content")
        tags = raw.get("tags") or ()
        if not isinstance(tags, (list, tuple)):
            raise PromptTemplateStoreError(f"prompt template {raw.get('id')!r} has malformed tags")
        subject = raw.get("subject")
        return cls(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            prompt_content=content,
            usage_type=str(raw.get("usage_type") or "chat"),
            subject=None if subject is None else str(subject),
            description=str(raw.get("description") or ""),
            tags=tuple(str(t) for t in tags),
            is_active=settings.truthy(raw.get("is_active")),
            auto_activate=settings.truthy(raw.get("auto_activate")),
            priority=_as_int(raw.get("priority")),
            created_at=str(raw.get("created_at") or ""),
            updated_at=str(raw.get("updated_at") or ""),
        )

    @property
    def is_universal(self) -> bool:
        subject = (self.subject or "").strip()
        return not subject or subject == ALL_SUBJECTS

    def matches_subject(self, subject: Optional[str]) -> bool:
        wanted = (subject or "").strip()
        if not wanted or self.is_universal:
            return True
        return (self.subject or "").strip() == wanted


class PromptTemplateStore(Protocol):
    def find_active_template(self, usage_type: str, subject: Optional[str] = None) -> Optional[PromptTemplate]: ...


def select_active_template(
    templates: Iterable[PromptTemplate],
    usage_type: str,
    subject: Optional[str] = None,
) -> Optional[PromptTemplate]:
    """Highest-priority active template; ties go to the newest, then the smallest id."""
    candidates = [
        t for t in templates if t.is_active and t.usage_type == usage_type and t.matches_subject(subject)
    ]
    if not candidates:
        return None
    # Stable sorts, least significant key first.
    candidates.sort(key=lambda t: t.id)
    candidates.sort(key=lambda t: t.updated_at, reverse=True)
    candidates.sort(key=lambda t: t.priority, reverse=True)
    return candidates[0]


class InMemoryPromptTemplateStore:
    def __init__(self, templates: Optional[Iterable[PromptTemplate]] = None):
        self._templates: List[PromptTemplate] = list(templates or [])

    def add(self, template: PromptTemplate) -> None:
        self._templates.append(template)

    def find_active_template(self, usage_type: str, subject: Optional[str] = None) -> Optional[PromptTemplate]:
        return select_active_template(self._templates, usage_type, subject)


class JsonFilePromptTemplateStore:
    """Templates kept in a JSON file, re-read on every lookup so edits apply without restart.

    The file holds either a list of template objects or ``{"templates": [...]}``.
    A missing file means no templates.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_templates(self) -> List[PromptTemplate]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PromptTemplateStoreError(f"cannot read prompt templates from {self.path}: {exc}") from exc
        if isinstance(raw, dict):
            raw = raw.get("templates")
        if not isinstance(raw, list):
            raise PromptTemplateStoreError(f"prompt templates file {self.path} must contain a list")
        return [PromptTemplate.from_dict(item) for item in raw]

    def find_active_template(self, usage_type: str, subject: Optional[str] = None) -> Optional[PromptTemplate]:
        return select_active_template(self.load_templates(), usage_type, subject)


class SupabasePromptTemplateStore:
    """Reads the ``prompt_templates`` table through the hosted backend's REST interface."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self._service_key = service_key
        self._session = session or requests.Session()
        self._timeout_sec = timeout_sec

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }

    @staticmethod
    def _params(usage_type: str, subject: Optional[str]) -> Dict[str, str]:
        params = {
            "select": "*",
            "usage_type": f"eq.{usage_type}",
            "is_active": "eq.true",
            "order": "priority.desc,updated_at.desc,id.asc",
        }
        wanted = (subject or "").strip()
        if wanted:
            params["or"] = f'(subject.eq."{wanted}",subject.eq."{ALL_SUBJECTS}",subject.is.null,subject.eq."")'
        return params

    def find_active_template(self, usage_type: str, subject: Optional[str] = None) -> Optional[PromptTemplate]:
        url = f"{self.base_url}{SUPABASE_TABLE_PATH}"
        try:
            resp = self._session.get(
                url,
                headers=self._headers(),
                params=self._params(usage_type, subject),
                timeout=self._timeout_sec,
            )
        except requests.RequestException as exc:
            raise PromptTemplateStoreError(f"prompt template query failed: {exc}") from exc
        if resp.status_code >= 400:
            raise PromptTemplateStoreError(f"prompt template query failed: HTTP {resp.status_code}")
        try:
            rows = resp.json()
        except ValueError as exc:
            raise PromptTemplateStoreError("prompt template query returned invalid JSON") from exc
        if not isinstance(rows, list):
            raise PromptTemplateStoreError("prompt template query returned a non-list body")
        return select_active_template((PromptTemplate.from_dict(row) for row in rows), usage_type, subject)


def build_template_store(*, session: Optional[requests.Session] = None) -> PromptTemplateStore:
    url = settings.supabase_url()
    key = settings.supabase_service_key()
    if url and key:
        _log.info("prompt templates: supabase store at %s", url)
        return SupabasePromptTemplateStore(url, key, session=session, timeout_sec=settings.provider_timeout_sec())
    path = settings.prompt_templates_path()
    _log.info("prompt templates: json file store at %s", path)
    return JsonFilePromptTemplateStore(path)
