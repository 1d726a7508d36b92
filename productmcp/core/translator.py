"""
Translator and presenter - the language-model collaborators of the orchestrator.

The translator turns a question plus the advertised tools into an ordered
list of ``Invocation`` values (or a plain-text reply). The presenter
rewrites the final tool message for the customer.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from productmcp.core.prompts import (
    PRESENTER_SYSTEM_PROMPT,
    TRANSLATOR_SYSTEM_PROMPT,
    presenter_user_message,
)
from productmcp.protocol.schema import Invocation, ToolDescriptor
from productmcp.providers.base import Provider, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class Translation:
    """What the translator decided for one question."""

    invocations: List[Invocation] = field(default_factory=list)
    reply_text: str = ""


class Translator(ABC):
    """Turns a question into tool invocations."""

    @abstractmethod
    def translate(self, utterance: str, tools: List[ToolDescriptor]) -> Translation:
        """Return the invocations to run, in order."""


class Presenter(ABC):
    """Rewrites a tool message for the end user."""

    @abstractmethod
    def present(self, utterance: str, message: str) -> str:
        """Return the rewritten message; raise ``ProviderError`` on failure."""


class LLMTranslator(Translator):
    """Translator backed by a chat provider with function calling."""

    def __init__(self, provider: Provider, system_prompt: str = TRANSLATOR_SYSTEM_PROMPT):
        self.provider = provider
        self.system_prompt = system_prompt

    def translate(self, utterance: str, tools: List[ToolDescriptor]) -> Translation:
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": utterance},
        ]
        response = self.provider.chat(messages, tools=[t.to_function_tool() for t in tools])
        logger.info(
            "Translator %s/%s returned %d tool calls",
            response.provider,
            response.model,
            len(response.tool_calls),
        )

        invocations = [to_invocation(call.name, call.arguments) for call in response.tool_calls]
        return Translation(invocations=invocations, reply_text=response.content)


def to_invocation(name: str, raw_arguments: str) -> Invocation:
    """
    Build an ``Invocation`` from a tool name and its JSON argument text.

    Unusable argument text does not raise; the invocation carries a
    ``parse_error`` so that the step fails on its own.
    """
    if not raw_arguments or not raw_arguments.strip():
        return Invocation(tool_name=name)
    try:
        arguments = json.loads(raw_arguments)
    except ValueError as exc:
        logger.warning("Arguments for %s are not valid JSON: %s", name, exc)
        return Invocation(tool_name=name, parse_error=f"Error parsing arguments: {exc}")
    if not isinstance(arguments, dict):
        return Invocation(tool_name=name, parse_error="Error parsing arguments: expected a JSON object")
    return Invocation(tool_name=name, arguments=arguments)


class LLMPresenter(Presenter):
    """Presenter backed by a chat provider."""

    def __init__(self, provider: Provider, system_prompt: str = PRESENTER_SYSTEM_PROMPT):
        self.provider = provider
        self.system_prompt = system_prompt

    def present(self, utterance: str, message: str) -> str:
        response = self.provider.chat([
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": presenter_user_message(utterance, message)},
        ])
        if not response.content.strip():
            raise ProviderError("Presenter returned an empty reply")
        return response.content
