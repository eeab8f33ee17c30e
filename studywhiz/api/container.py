from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

import requests

from llm_gateway import ModelRegistry, ProviderGateway, ProviderKeys

from . import settings
from .chat_dispatch_service import ChatDispatchDeps
from .observability import ObservabilityStore
from .prompt_template_store import PromptTemplateStore, build_template_store
from .template_resolver import TemplateResolver

_log = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class AppContainer:
    registry: ModelRegistry
    provider_keys: ProviderKeys
    gateway: ProviderGateway
    template_store: PromptTemplateStore
    resolver: TemplateResolver
    observability: ObservabilityStore
    max_tokens: int
    default_language: str = "en"

    def chat_dispatch_deps(self) -> ChatDispatchDeps:
        return ChatDispatchDeps(
            registry=self.registry,
            provider_keys=self.provider_keys,
            adapter_for=self.gateway.adapter_for,
            resolver=self.resolver,
            now_iso=utc_now_iso,
            max_tokens=self.max_tokens,
            default_language=self.default_language,
            record_provider_call=self.observability.record_provider_call,
        )


def build_app_container(
    *,
    environ: Optional[Mapping[str, str]] = None,
    registry_path: Optional[Path] = None,
    template_store: Optional[PromptTemplateStore] = None,
    session: Optional[requests.Session] = None,
) -> AppContainer:
    registry = ModelRegistry(registry_path or (settings.model_registry_path() or None))
    keys = ProviderKeys.from_env(registry, environ)
    http = session or requests.Session()
    store = template_store if template_store is not None else build_template_store(session=http)
    gateway = ProviderGateway(registry, keys, session=http, timeout_sec=settings.provider_timeout_sec())
    configured = ", ".join(p.value for p in keys.configured()) or "none"
    _log.info("container ready models=%d providers_with_keys=%s", len(registry.models), configured)
    return AppContainer(
        registry=registry,
        provider_keys=keys,
        gateway=gateway,
        template_store=store,
        resolver=TemplateResolver(store),
        observability=ObservabilityStore(),
        max_tokens=settings.llm_max_tokens(),
        default_language=settings.default_language(),
    )
