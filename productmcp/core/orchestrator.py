"""
Orchestrator - runs one user turn against the tool server.

A turn goes Idle -> AwaitingInvocations -> (Dispatch -> Decode -> Propagate)*
-> Idle. Every invocation is attempted exactly once, in order. A failed step
is recorded and the turn moves on. The only state carried between steps is
the most recent decoded result (``ChainState``), which is created fresh for
every turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from productmcp.core.translator import Presenter, Translator
from productmcp.protocol.client import ProtocolClient
from productmcp.protocol.schema import (
    Invocation,
    ProtocolError,
    StructuredResult,
    ToolDescriptor,
    decode_structured_result,
)
from productmcp.protocol.transport import TransportError
from productmcp.providers.base import ProviderError

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_INVOCATIONS = "awaiting_invocations"
    DISPATCH = "dispatch"
    DECODE = "decode"
    PROPAGATE = "propagate"


@dataclass(frozen=True)
class ChainRule:
    """Copy numeric ``field`` of the previous result into ``tool``'s arguments."""

    tool: str
    field: str


DEFAULT_CHAIN_RULES = (ChainRule(tool="apply_discount", field="total_price"),)


@dataclass
class ChainState:
    """The latest decoded result of the current turn."""

    last: Optional[StructuredResult] = None


@dataclass
class StepOutcome:
    """What happened to one invocation."""

    index: int
    invocation: Invocation  # arguments as dispatched, after propagation
    result: Optional[StructuredResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "arguments", "transport" or "protocol"
    propagated: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> Optional[str]:
        return self.result.display_text() if self.result else None


@dataclass
class TurnResult:
    """Everything one turn produced."""

    utterance: str
    steps: List[StepOutcome] = field(default_factory=list)
    reply_text: str = ""  # translator's own text when it chose no tools
    final_message: Optional[str] = None
    presented_message: Optional[str] = None

    @property
    def output(self) -> str:
        if self.presented_message:
            return self.presented_message
        if self.final_message:
            return self.final_message
        return self.reply_text


StepCallback = Callable[[StepOutcome], None]


class Orchestrator:
    """
    Executes translated invocations in order and chains results between them.

    Example:
        >>> orchestrator = Orchestrator(client, translator=LLMTranslator(provider))
        >>> turn = orchestrator.run_turn("five laptops and thirty phones, 打三折")
        >>> turn.output
        'Original price: $20000.00, After 30% discount: $6000.00 (You save: $14000.00)'
    """

    def __init__(
        self,
        client: ProtocolClient,
        translator: Optional[Translator] = None,
        presenter: Optional[Presenter] = None,
        rules: Sequence[ChainRule] = DEFAULT_CHAIN_RULES,
        on_step: Optional[StepCallback] = None,
    ):
        self.client = client
        self.translator = translator
        self.presenter = presenter
        self.rules = tuple(rules)
        self.on_step = on_step
        self.phase = TurnPhase.IDLE
        self._tools: Optional[List[ToolDescriptor]] = None

    # ── Tools ─────────────────────────────────────────────────────────────

    def tools(self) -> List[ToolDescriptor]:
        """Tool descriptors advertised by the server, fetched once."""
        if self._tools is None:
            self._tools = self.client.list_tools()
        return self._tools

    # ── Turns ─────────────────────────────────────────────────────────────

    def run_turn(self, utterance: str) -> TurnResult:
        """
        Translate ``utterance`` and run the resulting invocations.

        Raises:
            ValueError: If no translator is configured.
            ProviderError: If the translator fails; no tool has run yet.
        """
        if self.translator is None:
            raise ValueError("No translator configured; set agent.model to ask questions")

        tools = self.tools()
        self.phase = TurnPhase.AWAITING_INVOCATIONS
        try:
            translation = self.translator.translate(utterance, tools)
        finally:
            self.phase = TurnPhase.IDLE

        turn = TurnResult(utterance=utterance, reply_text=translation.reply_text)
        if not translation.invocations:
            return turn

        turn.steps = self.execute(translation.invocations)

        for step in reversed(turn.steps):
            if step.message:
                turn.final_message = step.message
                break

        if turn.final_message and self.presenter is not None:
            turn.presented_message = self._present(utterance, turn.final_message)
        return turn

    def execute(self, invocations: Sequence[Invocation]) -> List[StepOutcome]:
        """Run ``invocations`` in order with a fresh chain state."""
        chain = ChainState()
        steps: List[StepOutcome] = []
        try:
            for index, invocation in enumerate(invocations):
                step = self._run_step(index, invocation, chain)
                steps.append(step)
                if self.on_step is not None:
                    self.on_step(step)
        finally:
            self.phase = TurnPhase.IDLE
        return steps

    def _run_step(self, index: int, invocation: Invocation, chain: ChainState) -> StepOutcome:
        if invocation.parse_error:
            return StepOutcome(
                index=index,
                invocation=invocation,
                error=invocation.parse_error,
                error_kind="arguments",
            )

        arguments = dict(invocation.arguments)
        propagated = self._propagate(invocation.tool_name, arguments, chain)
        dispatched = Invocation(tool_name=invocation.tool_name, arguments=arguments)

        self.phase = TurnPhase.DISPATCH
        try:
            raw = self.client.call_tool(dispatched.tool_name, dispatched.arguments)
        except TransportError as exc:
            logger.error("Step %d (%s) failed in transport: %s", index, dispatched.tool_name, exc)
            return StepOutcome(
                index=index,
                invocation=dispatched,
                error=str(exc),
                error_kind="transport",
                propagated=propagated,
            )

        self.phase = TurnPhase.DECODE
        try:
            result = decode_structured_result(raw)
        except ProtocolError as exc:
            logger.error("Step %d (%s) returned a malformed reply: %s", index, dispatched.tool_name, exc)
            return StepOutcome(
                index=index,
                invocation=dispatched,
                error=str(exc),
                error_kind="protocol",
                propagated=propagated,
            )

        self.phase = TurnPhase.PROPAGATE
        chain.last = result
        return StepOutcome(index=index, invocation=dispatched, result=result, propagated=propagated)

    def _propagate(self, tool_name: str, arguments: Dict, chain: ChainState) -> Dict[str, float]:
        """Apply matching chain rules to ``arguments`` in place."""
        applied: Dict[str, float] = {}
        if chain.last is None:
            return applied

        for rule in self.rules:
            if rule.tool != tool_name:
                continue
            value = chain.last.number(rule.field)
            if value is None:
                logger.debug("No numeric %s in previous result, leaving %s as given", rule.field, tool_name)
                continue
            if arguments.get(rule.field) != value:
                logger.info("Using previous %s=%s for %s", rule.field, value, tool_name)
            arguments[rule.field] = value
            applied[rule.field] = value
        return applied

    def _present(self, utterance: str, message: str) -> str:
        try:
            return self.presenter.present(utterance, message)
        except ProviderError as exc:
            logger.warning("Presentation failed, showing the plain message: %s", exc)
            return message
