import re

from studywhiz.api.prompt_template_store import (
    InMemoryPromptTemplateStore,
    PromptTemplate,
    PromptTemplateStoreError,
)
from studywhiz.api.template_resolver import (
    SOURCE_BUILTIN,
    SOURCE_CUSTOM_PROMPT,
    SOURCE_SAFETY_NET,
    SOURCE_TEMPLATE_STORE,
    ResolutionContext,
    StrategyOutcome,
    TemplateResolver,
    derive_usage_type,
    usage_type_selector,
)


class _BrokenStore:
    def __init__(self):
        self.calls = 0

    def find_active_template(self, usage_type, subject=None):
        self.calls += 1
        raise PromptTemplateStoreError("database unavailable")


def _store(*templates):
    return InMemoryPromptTemplateStore(list(templates))


def _tpl(tid, content, *, usage_type="chat", subject=None, priority=0):
    return PromptTemplate(
        id=tid,
        name=tid,
        prompt_content=content,
        usage_type=usage_type,
        subject=subject,
        priority=priority,
        is_active=True,
    )


def test_derive_usage_type() -> None:
    assert derive_usage_type(is_grading_request=True) == "grading"
    assert derive_usage_type(is_grading_request=False) == "chat"
    assert derive_usage_type(is_grading_request=True, custom_prompt="explanation") == "explanation"
    assert derive_usage_type(is_grading_request=False, explicit="unified_math_chat") == "unified_math_chat"
    assert usage_type_selector("Be brief.") is None


def test_custom_prompt_wins_and_is_substituted() -> None:
    resolver = TemplateResolver(_store(_tpl("t", "store prompt")))
    resolved = resolver.resolve(
        ResolutionContext(custom_prompt="Coach {{first_name}} in {{country}}.", variables={"first_name": "Ada"})
    )
    assert resolved.source == SOURCE_CUSTOM_PROMPT
    assert resolved.content == "Coach Ada in your country."


def test_usage_type_selector_is_not_used_as_instructions() -> None:
    resolver = TemplateResolver(_store(_tpl("exp", "Explain {{exercise_content}}", usage_type="explanation")))
    resolved = resolver.resolve(ResolutionContext(usage_type="explanation", custom_prompt="explanation"))
    assert resolved.source == SOURCE_TEMPLATE_STORE
    assert resolved.content == "Explain the exercise"


def test_store_template_matching_usage_and_subject() -> None:
    store = _store(
        _tpl("chat-any", "generic {{subject}}", priority=1),
        _tpl("chat-math", "math for {{grade_level}}", subject="Mathematics", priority=5),
        _tpl("grading", "grade it", usage_type="grading", priority=100),
    )
    resolver = TemplateResolver(store)
    resolved = resolver.resolve(
        ResolutionContext(subject="Mathematics", variables={"grade_level": "6th", "subject": "Mathematics"})
    )
    assert resolved.source == SOURCE_TEMPLATE_STORE
    assert resolved.template_id == "chat-math"
    assert resolved.content == "math for 6th"


def test_falls_back_to_builtin_when_no_template() -> None:
    resolver = TemplateResolver(_store())
    resolved = resolver.resolve(ResolutionContext(usage_type="grading", is_grading_request=True, language="fr"))
    assert resolved.source == SOURCE_BUILTIN
    assert resolved.template_id == "builtin:grading"
    assert "CORRECT ou INCORRECT" in resolved.content


def test_store_errors_are_swallowed() -> None:
    store = _BrokenStore()
    resolver = TemplateResolver(store)
    resolved = resolver.resolve(ResolutionContext(is_exercise=True))
    assert store.calls == 1
    assert resolved.source == SOURCE_BUILTIN
    assert "**Guidance:**" in resolved.content


def test_safety_net_when_every_strategy_fails() -> None:
    resolver = TemplateResolver(None)

    def failing(_ctx):
        return StrategyOutcome(error="nope")

    resolver.strategies = [("failing", failing)]
    resolved = resolver.resolve(ResolutionContext())
    assert resolved.source == SOURCE_SAFETY_NET
    assert resolved.content.startswith("You are StudyWhiz")


def test_resolution_is_idempotent_and_placeholder_free() -> None:
    resolver = TemplateResolver(_store(_tpl("t", "Hello {{first_name}} {{unknown_thing}}")))
    ctx = ResolutionContext(variables={"first_name": "Lou"})
    first = resolver.resolve(ctx)
    second = resolver.resolve(ctx)
    assert first == second
    assert not re.search(r"\{\{[^}]+\}\}", first.content)


def test_resolve_enhancement_uses_math_enhanced_usage_type() -> None:
    resolver = TemplateResolver(_store(_tpl("m", "Check {{proposed_answer}}", usage_type="math_enhanced")))
    resolved = resolver.resolve_enhancement(language="en", variables={"proposed_answer": "7"})
    assert resolved.usage_type == "math_enhanced"
    assert resolved.content == "Check 7"
    builtin = TemplateResolver(_store()).resolve_enhancement(language="en")
    assert builtin.source == SOURCE_BUILTIN
    assert "**Problem:**" in builtin.content


def test_as_message_shape() -> None:
    resolved = TemplateResolver(None).resolve(ResolutionContext())
    assert resolved.as_message() == {"role": "system", "content": resolved.content}
