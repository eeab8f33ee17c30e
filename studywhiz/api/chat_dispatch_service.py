from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from llm_gateway import (
    DEFAULT_MAX_TOKENS,
    ModelConfig,
    ModelRegistry,
    Provider,
    ProviderAdapter,
    ProviderError,
    ProviderKeys,
    ProviderRequest,
)

from .api_models import AiChatRequest, AiChatResponse, ErrorResponse
from .prompt_variables import build_prompt_variables
from .request_classifier import Classification, classify, is_math_problem
from .template_resolver import (
    USAGE_CHAT,
    USAGE_EXPLANATION,
    USAGE_UNIFIED_MATH_CHAT,
    ResolutionContext,
    TemplateResolver,
    derive_usage_type,
)

_log = logging.getLogger(__name__)

_EXPLANATION_FIELDS = ("exercise_content", "student_answer", "correct_answer", "mode", "reveal_final_answer")


class ChatDispatchError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = int(status_code)
        self.detail = detail


@dataclass(frozen=True)
class ChatDispatchDeps:
    registry: ModelRegistry
    provider_keys: ProviderKeys
    adapter_for: Callable[[Provider], ProviderAdapter]
    resolver: TemplateResolver
    now_iso: Callable[[], str]
    max_tokens: int = DEFAULT_MAX_TOKENS
    default_language: str = "en"
    record_provider_call: Optional[Callable[..., None]] = None
    monotonic: Callable[[], float] = time.monotonic


def classify_error_status(message: str) -> int:
    text = str(message or "")
    if "API key" in text:
        return 401
    if "model" in text or "Unsupported" in text:
        return 400
    if "timeout" in text or "network" in text:
        return 503
    return 500


def error_payload(status_code: int, detail: Any, *, now_iso: Callable[[], str]) -> Dict[str, Any]:
    return ErrorResponse(error=str(detail), timestamp=now_iso(), status_code=int(status_code)).model_dump(
        by_alias=True
    )


def parse_chat_body(raw_body: bytes) -> AiChatRequest:
    try:
        data = json.loads(raw_body or b"")
    except ValueError:
        raise ChatDispatchError(400, "Invalid JSON in request body")
    if not isinstance(data, dict):
        raise ChatDispatchError(400, "Request body must be a JSON object")
    try:
        return AiChatRequest.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(part) for part in first.get("loc") or ()) or "body"
        raise ChatDispatchError(400, f"Invalid request body: {where}: {first.get('msg') or 'invalid value'}")


def _missing_fields(req: AiChatRequest) -> List[str]:
    missing: List[str] = []
    if not req.message:
        missing.append("message")
    if not req.model_id:
        missing.append("modelId")
    return missing


def _resolve_model(model_id: str, registry: ModelRegistry) -> ModelConfig:
    config = registry.resolve_model_config(model_id)
    if config is None:
        supported = ", ".join(registry.supported_model_ids())
        raise ChatDispatchError(400, f"Unsupported model ID: {model_id}. Supported models: {supported}")
    return config


def _require_provider_key(provider: Provider, keys: ProviderKeys) -> None:
    if keys.get(provider):
        return
    configured = ", ".join(p.value for p in keys.configured()) or "none"
    _log.error("missing API key for provider=%s env=%s", provider.value, keys.env_name(provider))
    raise ChatDispatchError(
        500,
        f"{provider.value} API key not configured. Set the {keys.env_name(provider)} secret. "
        f"Configured providers: {configured}",
    )


def _subject_for(req: AiChatRequest) -> Optional[str]:
    if req.subject and req.subject.strip():
        return req.subject.strip()
    value = (req.user_context or {}).get("subject")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _wants_math_enhancement(provider: Provider, usage_type: str, classification: Classification, message: str) -> bool:
    if provider is not Provider.OPENAI or usage_type != USAGE_CHAT:
        return False
    return not classification.is_grading_request and is_math_problem(message)


def dispatch_chat(raw_body: bytes, *, deps: ChatDispatchDeps) -> Dict[str, Any]:
    req = parse_chat_body(raw_body)
    missing = _missing_fields(req)
    if missing:
        raise ChatDispatchError(400, f"Missing required fields: {', '.join(missing)}")
    message = str(req.message)
    model_id = str(req.model_id)
    language = (req.language or "").strip() or deps.default_language

    if req.is_unified:
        classification = Classification(is_exercise=False, is_grading_request=False)
        usage_type = USAGE_UNIFIED_MATH_CHAT
    else:
        classification = classify(message, bool(req.is_grading_request))
        usage_type = derive_usage_type(
            is_grading_request=classification.is_grading_request,
            custom_prompt=req.custom_prompt,
        )

    config = _resolve_model(model_id, deps.registry)
    _require_provider_key(config.provider, deps.provider_keys)
    _log.info(
        "ai-chat model_id=%s provider=%s usage_type=%s exercise=%s grading=%s",
        model_id,
        config.provider.value,
        usage_type,
        classification.is_exercise,
        classification.is_grading_request,
    )

    subject = _subject_for(req)
    variables = build_prompt_variables(
        message=message,
        language=language,
        user_context=req.user_context,
        subject=subject,
        extras={name: getattr(req, name) for name in _EXPLANATION_FIELDS},
    )
    resolved = deps.resolver.resolve(
        ResolutionContext(
            usage_type=usage_type,
            language=language,
            subject=subject,
            custom_prompt=req.custom_prompt,
            is_grading_request=classification.is_grading_request,
            is_exercise=classification.is_exercise,
            variables=variables,
        )
    )
    system_message = resolved.as_message()
    if _wants_math_enhancement(config.provider, usage_type, classification, message):
        enhancement = deps.resolver.resolve_enhancement(language=language, subject=subject, variables=variables)
        system_message = {"role": "system", "content": f"{system_message['content']}\n\n{enhancement.content}"}

    adapter = deps.adapter_for(config.provider)
    provider_req = ProviderRequest(
        system_message=adapter.format_system_message(system_message),
        history=adapter.format_history([m.model_dump() for m in req.history or []]),
        user_message=message,
        model=config.model,
        is_exercise=classification.is_exercise,
        max_tokens=deps.max_tokens,
        structured_explanation=usage_type == USAGE_EXPLANATION and config.provider is Provider.OPENAI,
    )

    started = deps.monotonic()
    try:
        content = adapter.call(provider_req)
    except ProviderError as exc:
        _record(deps, config.provider, ok=False, started=started)
        raise ChatDispatchError(classify_error_status(exc.message), exc.message) from exc
    except Exception as exc:
        _record(deps, config.provider, ok=False, started=started)
        _log.error("provider call crashed provider=%s", config.provider.value, exc_info=True)
        detail = str(exc) or "Internal server error"
        raise ChatDispatchError(classify_error_status(detail), detail) from exc
    _record(deps, config.provider, ok=True, started=started)

    return AiChatResponse(
        content=content,
        model_id=model_id,
        model_used=config.model,
        provider=config.provider.value,
        is_exercise=classification.is_exercise,
        timestamp=deps.now_iso(),
    ).model_dump(by_alias=True)


def _record(deps: ChatDispatchDeps, provider: Provider, *, ok: bool, started: float) -> None:
    if deps.record_provider_call is None:
        return
    deps.record_provider_call(provider=provider.value, ok=ok, latency_sec=deps.monotonic() - started)
