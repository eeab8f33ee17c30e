from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

import requests
import yaml

_log = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_REGISTRY_PATH = PROJECT_ROOT / "config" / "model_registry.yaml"

DEFAULT_MAX_TOKENS = 800
DEFAULT_TEMPERATURE = 0.7
ANTHROPIC_MAX_TOKENS = 800
ANTHROPIC_API_VERSION = "2023-06-01"

GRADING_MESSAGE_PREFIX = "Grade this answer"
GRADING_FALLBACK_VERDICT = "INCORRECT"

EXERCISE_HINT = "\n\nNote: If this is a homework question, please format your response as an exercise with clear steps."
GOOGLE_EXERCISE_HINT = "\n\nNote: Format this as an educational exercise if it's a homework question."
ANTHROPIC_SYSTEM_SUFFIX = "\n\nPlease remember these instructions for our conversation."

# Model families that reject max_tokens/temperature on chat completions.
_COMPLETION_TOKEN_PREFIXES = ("gpt-5", "gpt-4.1", "o3", "o4")

EXPLANATION_SECTIONS = ("concept", "example", "strategy", "pitfall", "check", "practice")
EXPLANATION_TOOL_NAME = "build_explanation"
EXPLANATION_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": EXPLANATION_TOOL_NAME,
        "description": "Return a structured teaching explanation for the exercise.",
        "parameters": {
            "type": "object",
            "properties": {
                "isMath": {"type": "boolean"},
                "exercise": {"type": "string"},
                "sections": {
                    "type": "object",
                    "properties": {name: {"type": "string"} for name in EXPLANATION_SECTIONS},
                    "required": list(EXPLANATION_SECTIONS),
                    "additionalProperties": False,
                },
            },
            "required": ["isMath", "exercise", "sections"],
            "additionalProperties": False,
        },
    },
}


class Provider(str, Enum):
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    MISTRAL = "Mistral AI"
    GOOGLE = "Google"
    DEEPSEEK = "DeepSeek"
    XAI = "xAI"


class ProviderError(RuntimeError):
    """Upstream call failed; the message is safe to surface to the caller."""

    def __init__(self, provider: Provider, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ModelConfig:
    model_id: str
    provider: Provider
    model: str


@dataclass(frozen=True)
class ProviderSpec:
    provider: Provider
    api_key_env: str
    base_url: str
    endpoint: str
    api_version: str = ""


@dataclass
class ProviderRequest:
    system_message: Dict[str, str]
    history: List[Dict[str, str]]
    user_message: str
    model: str
    is_exercise: bool = False
    max_tokens: int = DEFAULT_MAX_TOKENS
    structured_explanation: bool = False


def _load_registry(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Model registry not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@lru_cache(maxsize=8)
def _load_registry_cached(path_str: str) -> Dict[str, Any]:
    # Changes require process restart.
    return _load_registry(Path(path_str))


def _parse_providers(raw: Dict[str, Any]) -> Dict[Provider, ProviderSpec]:
    specs: Dict[Provider, ProviderSpec] = {}
    for label, cfg in (raw.get("providers") or {}).items():
        provider = Provider(label)
        cfg = cfg if isinstance(cfg, dict) else {}
        specs[provider] = ProviderSpec(
            provider=provider,
            api_key_env=str(cfg.get("api_key_env") or f"{provider.name}_API_KEY"),
            base_url=str(cfg.get("base_url") or "").rstrip("/"),
            endpoint=str(cfg.get("endpoint") or ""),
            api_version=str(cfg.get("api_version") or ""),
        )
    missing = [p.value for p in Provider if p not in specs]
    if missing:
        raise ValueError(f"Model registry is missing provider entries: {', '.join(missing)}")
    return specs


def _parse_models(raw: Dict[str, Any]) -> Dict[str, ModelConfig]:
    models: Dict[str, ModelConfig] = {}
    for model_id, cfg in (raw.get("models") or {}).items():
        if not isinstance(cfg, dict) or not cfg.get("model"):
            raise ValueError(f"Model registry entry {model_id!r} needs provider and model")
        models[str(model_id)] = ModelConfig(
            model_id=str(model_id),
            provider=Provider(cfg.get("provider")),
            model=str(cfg["model"]),
        )
    return models


class ModelRegistry:
    """Read-only view over config/model_registry.yaml."""

    def __init__(self, registry_path: Optional[Path] = None):
        path = Path(registry_path or os.getenv("MODEL_REGISTRY_PATH") or DEFAULT_REGISTRY_PATH)
        raw = _load_registry_cached(str(path))
        defaults = raw.get("defaults") or {}
        self.path = path
        self.providers: Mapping[Provider, ProviderSpec] = MappingProxyType(_parse_providers(raw))
        self.models: Mapping[str, ModelConfig] = MappingProxyType(_parse_models(raw))
        self.fallback = ModelConfig(
            model_id="default",
            provider=Provider(defaults.get("provider") or Provider.OPENAI.value),
            model=str(defaults.get("model") or "gpt-3.5-turbo"),
        )
        self.default_max_tokens = int(defaults.get("max_tokens") or DEFAULT_MAX_TOKENS)

    def supported_model_ids(self) -> List[str]:
        return list(self.models.keys())

    def resolve_model_config(self, model_id: str) -> Optional[ModelConfig]:
        return self.models.get(model_id)

    def get_model_config(self, model_id: Optional[str]) -> ModelConfig:
        # Lenient lookup for internal callers; the HTTP surface uses resolve_model_config.
        return self.models.get(model_id or "") or self.fallback

    def provider_spec(self, provider: Provider) -> ProviderSpec:
        return self.providers[provider]


@dataclass(frozen=True)
class ProviderKeys:
    keys: Mapping[Provider, str] = field(default_factory=dict)
    env_names: Mapping[Provider, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, registry: ModelRegistry, environ: Optional[Mapping[str, str]] = None) -> "ProviderKeys":
        source = os.environ if environ is None else environ
        keys: Dict[Provider, str] = {}
        env_names: Dict[Provider, str] = {}
        for provider, spec in registry.providers.items():
            env_names[provider] = spec.api_key_env
            value = str(source.get(spec.api_key_env) or "").strip()
            if value:
                keys[provider] = value
        return cls(keys=MappingProxyType(keys), env_names=MappingProxyType(env_names))

    def get(self, provider: Provider) -> Optional[str]:
        return self.keys.get(provider) or None

    def env_name(self, provider: Provider) -> str:
        return self.env_names.get(provider) or f"{provider.name}_API_KEY"

    def configured(self) -> List[Provider]:
        return [p for p in Provider if self.keys.get(p)]


def _upstream_error_message(resp: Any) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err.strip():
            return err.strip()
        if data.get("message"):
            return str(data["message"])
    text = str(getattr(resp, "text", "") or "").strip()
    return text or f"HTTP {resp.status_code}"


class ProviderAdapter:
    provider: Provider = Provider.OPENAI
    exercise_hint: str = EXERCISE_HINT

    def __init__(
        self,
        spec: ProviderSpec,
        api_key: Optional[str],
        session: requests.Session,
        timeout_sec: Optional[float] = None,
    ):
        self.spec = spec
        self.api_key = api_key
        self.session = session
        self.timeout_sec = timeout_sec

    @property
    def label(self) -> str:
        return self.provider.value

    def format_system_message(self, message: Dict[str, str]) -> Dict[str, str]:
        return dict(message)

    def format_history(self, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        return [dict(msg) for msg in history]

    def call(self, req: ProviderRequest) -> str:
        raise NotImplementedError

    def _require_key(self) -> str:
        if not self.api_key:
            _log.error("%s API key not configured", self.label)
            raise ProviderError(self.provider, f"{self.label} API key not configured")
        return self.api_key

    def _user_content(self, req: ProviderRequest) -> str:
        if req.is_exercise and self.exercise_hint:
            return f"{req.user_message}{self.exercise_hint}"
        return req.user_message

    def _url(self, model: str) -> str:
        return f"{self.spec.base_url}{self.spec.endpoint.format(model=model)}"

    def _post_json(
        self,
        url: str,
        *,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        # Only the exception class is reported: its text carries the URL, query-string key included.
        try:
            resp = self.session.post(url, headers=headers, params=params, json=payload, timeout=self.timeout_sec)
        except requests.Timeout as exc:
            _log.warning("%s API request timeout: %s", self.label, exc.__class__.__name__)
            raise ProviderError(self.provider, f"{self.label} API request timeout: {exc.__class__.__name__}") from exc
        except requests.RequestException as exc:
            _log.warning("%s API network error: %s", self.label, exc.__class__.__name__)
            raise ProviderError(self.provider, f"{self.label} API network error: {exc.__class__.__name__}") from exc
        if not 200 <= int(resp.status_code) < 300:
            detail = _upstream_error_message(resp)
            _log.error("%s API error (%s): %s", self.label, resp.status_code, detail)
            raise ProviderError(self.provider, f"{self.label} API error: {detail}", status_code=int(resp.status_code))
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(self.provider, f"Invalid response received from {self.label}") from exc
        if not isinstance(data, dict):
            raise ProviderError(self.provider, f"Invalid response received from {self.label}")
        return data

    def _extract_text(self, data: Dict[str, Any], path: Tuple[Any, ...]) -> str:
        node: Any = data
        for key in path:
            try:
                node = node[key]
            except (KeyError, IndexError, TypeError):
                node = None
                break
        if not isinstance(node, str):
            _log.error("Invalid response format from %s", self.label)
            raise ProviderError(self.provider, f"Invalid response received from {self.label}")
        return node


class _ChatCompletionsAdapter(ProviderAdapter):
    def _messages(self, req: ProviderRequest) -> List[Dict[str, str]]:
        return [req.system_message, *req.history, {"role": "user", "content": self._user_content(req)}]

    def _payload(self, req: ProviderRequest) -> Dict[str, Any]:
        return {
            "model": req.model,
            "messages": self._messages(req),
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": req.max_tokens,
        }

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def call(self, req: ProviderRequest) -> str:
        api_key = self._require_key()
        _log.info("[%s] Calling with model: %s, maxTokens: %s", self.label, req.model, req.max_tokens)
        data = self._post_json(self._url(req.model), headers=self._headers(api_key), payload=self._payload(req))
        return self._extract_text(data, ("choices", 0, "message", "content"))


class OpenAIAdapter(_ChatCompletionsAdapter):
    provider = Provider.OPENAI
    # OpenAI gets the math enhancement in the system message instead.
    exercise_hint = ""

    @staticmethod
    def resolve_model_name(model: str) -> str:
        return "gpt-4o" if model == "gpt4o" else model

    @staticmethod
    def uses_completion_token_param(model: str) -> bool:
        return model.startswith(_COMPLETION_TOKEN_PREFIXES)

    def _payload(self, req: ProviderRequest) -> Dict[str, Any]:
        model = self.resolve_model_name(req.model)
        payload: Dict[str, Any] = {"model": model, "messages": self._messages(req)}
        if self.uses_completion_token_param(model):
            payload["max_completion_tokens"] = req.max_tokens
        else:
            payload["max_tokens"] = req.max_tokens
            payload["temperature"] = DEFAULT_TEMPERATURE
        if req.structured_explanation:
            payload["tools"] = [EXPLANATION_TOOL]
            payload["tool_choice"] = {"type": "function", "function": {"name": EXPLANATION_TOOL_NAME}}
        return payload

    def _explanation_from(self, data: Dict[str, Any]) -> str:
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError):
            message = None
        if not isinstance(message, dict):
            raise ProviderError(self.provider, f"Invalid response received from {self.label}")
        tool_calls = message.get("tool_calls") or []
        if not tool_calls:
            content = message.get("content")
            if isinstance(content, str) and content.strip():
                return content
            raise ProviderError(self.provider, f"Invalid response received from {self.label}")
        first = tool_calls[0] if isinstance(tool_calls, list) else None
        function = first.get("function") if isinstance(first, dict) else None
        arguments = function.get("arguments") if isinstance(function, dict) else None
        if not isinstance(arguments, str):
            raise ProviderError(self.provider, f"Invalid explanation payload received from {self.label}")
        try:
            parsed = json.loads(arguments)
        except ValueError as exc:
            raise ProviderError(self.provider, f"Invalid explanation payload received from {self.label}") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(self.provider, f"Invalid explanation payload received from {self.label}")
        return json.dumps(parsed, ensure_ascii=False)

    def call(self, req: ProviderRequest) -> str:
        api_key = self._require_key()
        model = self.resolve_model_name(req.model)
        try:
            _log.info("Calling OpenAI API with model: %s", model)
            data = self._post_json(self._url(model), headers=self._headers(api_key), payload=self._payload(req))
            if req.structured_explanation:
                return self._explanation_from(data)
            text = self._extract_text(data, ("choices", 0, "message", "content"))
            if not text.strip():
                raise ProviderError(self.provider, f"Invalid response received from {self.label}")
            return text
        except Exception as exc:
            # A grading caller must always get a verdict.
            if req.user_message.startswith(GRADING_MESSAGE_PREFIX):
                _log.warning("Falling back to %s for failed grading request: %s", GRADING_FALLBACK_VERDICT, exc)
                return GRADING_FALLBACK_VERDICT
            raise


class AnthropicAdapter(ProviderAdapter):
    provider = Provider.ANTHROPIC

    def format_system_message(self, message: Dict[str, str]) -> Dict[str, str]:
        if message.get("role") != "system":
            return dict(message)
        return {"role": "user", "content": f"{message.get('content', '')}{ANTHROPIC_SYSTEM_SUFFIX}"}

    def format_history(self, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        return [
            {"role": "assistant" if msg.get("role") == "assistant" else "user", "content": msg.get("content", "")}
            for msg in history
        ]

    def call(self, req: ProviderRequest) -> str:
        api_key = self._require_key()
        messages = [
            self.format_system_message(req.system_message),
            *self.format_history(req.history),
            {"role": "user", "content": self._user_content(req)},
        ]
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self.spec.api_version or ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }
        payload = {"model": req.model, "messages": messages, "max_tokens": ANTHROPIC_MAX_TOKENS}
        _log.info("[Anthropic] Calling with model: %s", req.model)
        data = self._post_json(self._url(req.model), headers=headers, payload=payload)
        return self._extract_text(data, ("content", 0, "text"))


class MistralAdapter(_ChatCompletionsAdapter):
    provider = Provider.MISTRAL


class DeepSeekAdapter(_ChatCompletionsAdapter):
    provider = Provider.DEEPSEEK


class XAIAdapter(_ChatCompletionsAdapter):
    provider = Provider.XAI


class GoogleAdapter(ProviderAdapter):
    provider = Provider.GOOGLE
    exercise_hint = GOOGLE_EXERCISE_HINT

    def build_prompt_text(self, req: ProviderRequest) -> str:
        combined_history = "\n".join(str(msg.get("content", "")) for msg in req.history)
        system_content = req.system_message.get("content", "")
        return f"{system_content}\n\n{combined_history}\n\nUser: {self._user_content(req)}\nAssistant:"

    def call(self, req: ProviderRequest) -> str:
        api_key = self._require_key()
        payload = {
            "contents": [{"parts": [{"text": self.build_prompt_text(req)}]}],
            "generationConfig": {"temperature": DEFAULT_TEMPERATURE, "maxOutputTokens": req.max_tokens},
        }
        _log.info("[Google] Calling with model: %s", req.model)
        data = self._post_json(
            self._url(req.model),
            headers={"Content-Type": "application/json"},
            params={"key": api_key},
            payload=payload,
        )
        return self._extract_text(data, ("candidates", 0, "content", "parts", 0, "text"))


ADAPTER_CLASSES: Mapping[Provider, Type[ProviderAdapter]] = MappingProxyType(
    {
        Provider.OPENAI: OpenAIAdapter,
        Provider.ANTHROPIC: AnthropicAdapter,
        Provider.MISTRAL: MistralAdapter,
        Provider.GOOGLE: GoogleAdapter,
        Provider.DEEPSEEK: DeepSeekAdapter,
        Provider.XAI: XAIAdapter,
    }
)


class ProviderGateway:
    def __init__(
        self,
        registry: ModelRegistry,
        keys: ProviderKeys,
        *,
        session: Optional[requests.Session] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.registry = registry
        self.keys = keys
        self.timeout_sec = timeout_sec
        self._session = session or requests.Session()

    def adapter_for(self, provider: Provider) -> ProviderAdapter:
        adapter_cls = ADAPTER_CLASSES[provider]
        return adapter_cls(
            self.registry.provider_spec(provider),
            self.keys.get(provider),
            self._session,
            timeout_sec=self.timeout_sec,
        )


__all__ = [
    "ADAPTER_CLASSES",
    "ModelConfig",
    "ModelRegistry",
    "Provider",
    "ProviderAdapter",
    "ProviderError",
    "ProviderGateway",
    "ProviderKeys",
    "ProviderRequest",
]
