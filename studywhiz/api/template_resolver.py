"""System-message resolution as an ordered list of strategies.

Each strategy returns a ``StrategyOutcome``: a resolved prompt, an error, or
neither (not applicable). The first prompt wins; errors are logged and the
chain moves on, so ``TemplateResolver.resolve`` never raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .builtin_prompts import BUILTIN_PROMPTS, GENERAL, builtin_prompt
from .prompt_template_store import USAGE_TYPES, PromptTemplateStore
from .prompt_variables import substitute

_log = logging.getLogger(__name__)

USAGE_CHAT = "chat"
USAGE_GRADING = "grading"
USAGE_EXPLANATION = "explanation"
USAGE_MATH_ENHANCED = "math_enhanced"
USAGE_UNIFIED_MATH_CHAT = "unified_math_chat"

SOURCE_CUSTOM_PROMPT = "custom_prompt"
SOURCE_TEMPLATE_STORE = "template_store"
SOURCE_BUILTIN = "builtin"
SOURCE_SAFETY_NET = "safety_net"


@dataclass(frozen=True)
class ResolutionContext:
    usage_type: str = USAGE_CHAT
    language: str = "en"
    subject: Optional[str] = None
    custom_prompt: Optional[str] = None
    is_grading_request: bool = False
    is_exercise: bool = False
    variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedPrompt:
    content: str
    source: str
    usage_type: str
    template_id: Optional[str] = None

    def as_message(self) -> Dict[str, str]:
        return {"role": "system", "content": self.content}


@dataclass(frozen=True)
class StrategyOutcome:
    prompt: Optional[ResolvedPrompt] = None
    error: Optional[str] = None

    @classmethod
    def skip(cls) -> "StrategyOutcome":
        return cls()


PromptStrategy = Callable[[ResolutionContext], StrategyOutcome]


def usage_type_selector(custom_prompt: Optional[str]) -> Optional[str]:
    """A ``customPrompt`` equal to a usage-type name selects that type instead of being instructions."""
    text = str(custom_prompt or "").strip()
    return text if text in USAGE_TYPES else None


def derive_usage_type(
    *,
    is_grading_request: bool,
    custom_prompt: Optional[str] = None,
    explicit: Optional[str] = None,
) -> str:
    if explicit:
        return explicit
    selected = usage_type_selector(custom_prompt)
    if selected:
        return selected
    return USAGE_GRADING if is_grading_request else USAGE_CHAT


class TemplateResolver:
    def __init__(self, store: Optional[PromptTemplateStore] = None):
        self.store = store
        self.strategies: List[Tuple[str, PromptStrategy]] = [
            (SOURCE_CUSTOM_PROMPT, self._from_custom_prompt),
            (SOURCE_TEMPLATE_STORE, self._from_template_store),
            (SOURCE_BUILTIN, self._from_builtin),
        ]

    def resolve(self, ctx: ResolutionContext) -> ResolvedPrompt:
        for name, strategy in self.strategies:
            try:
                outcome = strategy(ctx)
            except Exception as exc:
                _log.warning("prompt strategy %s raised", name, exc_info=True)
                outcome = StrategyOutcome(error=str(exc) or exc.__class__.__name__)
            if outcome.prompt is not None:
                _log.info(
                    "system prompt resolved usage_type=%s source=%s template_id=%s",
                    outcome.prompt.usage_type,
                    outcome.prompt.source,
                    outcome.prompt.template_id or "-",
                )
                return outcome.prompt
            if outcome.error:
                _log.warning("prompt strategy %s failed: %s", name, outcome.error)
        return ResolvedPrompt(
            content=substitute(BUILTIN_PROMPTS[(GENERAL, "en")], ctx.variables),
            source=SOURCE_SAFETY_NET,
            usage_type=ctx.usage_type,
        )

    def resolve_enhancement(
        self,
        *,
        language: str,
        subject: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> ResolvedPrompt:
        return self.resolve(
            ResolutionContext(
                usage_type=USAGE_MATH_ENHANCED,
                language=language,
                subject=subject,
                variables=variables or {},
            )
        )

    def _from_custom_prompt(self, ctx: ResolutionContext) -> StrategyOutcome:
        text = str(ctx.custom_prompt or "")
        if not text.strip() or usage_type_selector(text):
            return StrategyOutcome.skip()
        return StrategyOutcome(
            prompt=ResolvedPrompt(
                content=substitute(text, ctx.variables),
                source=SOURCE_CUSTOM_PROMPT,
                usage_type=ctx.usage_type,
            )
        )

    def _from_template_store(self, ctx: ResolutionContext) -> StrategyOutcome:
        if self.store is None:
            return StrategyOutcome.skip()
        template = self.store.find_active_template(ctx.usage_type, ctx.subject)
        if template is None:
            return StrategyOutcome.skip()
        return StrategyOutcome(
            prompt=ResolvedPrompt(
                content=substitute(template.prompt_content, ctx.variables),
                source=SOURCE_TEMPLATE_STORE,
                usage_type=ctx.usage_type,
                template_id=template.id or None,
            )
        )

    def _from_builtin(self, ctx: ResolutionContext) -> StrategyOutcome:
        key, text = builtin_prompt(ctx.usage_type, ctx.is_grading_request, ctx.is_exercise, ctx.language)
        return StrategyOutcome(
            prompt=ResolvedPrompt(
                content=substitute(text, ctx.variables),
                source=SOURCE_BUILTIN,
                usage_type=ctx.usage_type,
                template_id=f"builtin:{key}",
            )
        )
