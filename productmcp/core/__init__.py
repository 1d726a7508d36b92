"""
productmcp core module.

Orchestration of tool calls and the language-model collaborators around it.
"""

from productmcp.core.orchestrator import (
    ChainRule,
    ChainState,
    Orchestrator,
    StepOutcome,
    TurnPhase,
    TurnResult,
)
from productmcp.core.translator import LLMPresenter, LLMTranslator, Presenter, Translation, Translator

__all__ = [
    "ChainRule",
    "ChainState",
    "LLMPresenter",
    "LLMTranslator",
    "Orchestrator",
    "Presenter",
    "StepOutcome",
    "Translation",
    "Translator",
    "TurnPhase",
    "TurnResult",
]
