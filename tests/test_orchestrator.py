"""Tests for the orchestrator: ordered execution, chaining and failure handling."""

import json

import pytest

from productmcp.core.orchestrator import ChainRule, Orchestrator, TurnPhase
from productmcp.core.translator import Presenter, Translation, Translator
from productmcp.protocol.schema import CallResult, Invocation
from productmcp.protocol.transport import TransportClosedError
from productmcp.providers.base import ProviderError


class FixedTranslator(Translator):
    """Returns the same translation for every question."""

    def __init__(self, invocations=None, reply_text=""):
        self.invocations = invocations or []
        self.reply_text = reply_text
        self.seen = []

    def translate(self, utterance, tools):
        self.seen.append((utterance, [t.name for t in tools]))
        return Translation(invocations=list(self.invocations), reply_text=self.reply_text)


class EchoPresenter(Presenter):
    def present(self, utterance, message):
        return f"[polished] {message}"


class BrokenPresenter(Presenter):
    def present(self, utterance, message):
        raise ProviderError("model offline")


def call(name, **arguments):
    return Invocation(tool_name=name, arguments=arguments)


def cart(*pairs):
    return call("calculate_total", items=[{"product_id": pid, "quantity": qty} for pid, qty in pairs])


class TestChaining:
    """Tests for carrying total_price between steps."""

    def test_total_then_discount(self, loopback_client):
        """Test a discount with no total of its own uses the computed total."""
        orchestrator = Orchestrator(loopback_client, translator=FixedTranslator([
            cart(("1", 5), ("2", 30)),
            call("apply_discount", discount_percentage=30),
        ]))

        turn = orchestrator.run_turn("五台筆電加上三十台智慧型手機再打三折")
        total, discount = turn.steps

        assert total.result.number("total_price") == 20000.0
        assert discount.invocation.arguments["total_price"] == 20000.0
        assert discount.propagated == {"total_price": 20000.0}
        assert discount.result.number("discounted_price") == 6000.00
        assert discount.result.number("saved_amount") == 14000.00
        assert turn.final_message == (
            "Original price: $20000.00, After 30% discount: $6000.00 (You save: $14000.00)"
        )
        assert turn.output == turn.final_message

    def test_dispatched_arguments_are_copies(self, loopback_client):
        """Test the translator's invocation is not modified by propagation."""
        discount = call("apply_discount", total_price=1, discount_percentage=50)
        orchestrator = Orchestrator(loopback_client)

        steps = orchestrator.execute([cart(("3", 2)), discount])

        assert discount.arguments["total_price"] == 1
        assert steps[1].invocation.arguments["total_price"] == 600.0

    def test_no_previous_result(self, loopback_client):
        """Test a first-step discount is sent exactly as translated."""
        steps = Orchestrator(loopback_client).execute([
            call("apply_discount", total_price=2000, discount_percentage=80),
        ])

        assert steps[0].propagated == {}
        assert steps[0].result.number("discounted_price") == 1600.0

    def test_previous_result_without_total(self, loopback_client):
        """Test a previous result lacking total_price leaves the argument alone."""
        steps = Orchestrator(loopback_client).execute([
            call("get_price", product_id="1"),
            call("apply_discount", total_price=1000, discount_percentage=50),
        ])

        assert steps[1].propagated == {}
        assert steps[1].invocation.arguments["total_price"] == 1000
        assert steps[1].result.number("discounted_price") == 500.0

    def test_wrong_kind_total_is_skipped(self, scripted):
        """Test a non-numeric total_price in the previous result is not copied."""
        first = json.dumps({"jsonrpc": "2.0", "id": 1, "result": CallResult.structured(
            {"success": True, "total_price": "lots", "message": "odd"}).to_wire()})
        second = json.dumps({"jsonrpc": "2.0", "id": 2, "result": CallResult.structured(
            {"success": True, "message": "done"}).to_wire()})
        client, transport = scripted([first, second])

        steps = Orchestrator(client).execute([
            cart(("1", 1)),
            call("apply_discount", total_price=10, discount_percentage=50),
        ])

        assert steps[1].propagated == {}
        assert json.loads(transport.sent[1])["params"]["arguments"]["total_price"] == 10

    def test_latest_result_wins(self, loopback_client):
        """Test the most recent total is the one carried forward."""
        steps = Orchestrator(loopback_client).execute([
            cart(("1", 1)),
            cart(("3", 1)),
            call("apply_discount", total_price=0, discount_percentage=50),
        ])

        assert steps[2].invocation.arguments["total_price"] == 300.0

    def test_error_result_still_updates_chain(self, loopback_client):
        """Test a decoded error result replaces the previous total."""
        steps = Orchestrator(loopback_client).execute([
            cart(("1", 2)),
            cart(("1", 0)),
            call("apply_discount", total_price=100, discount_percentage=50),
        ])

        assert steps[1].result.is_error is True
        assert steps[2].propagated == {}
        assert steps[2].result.number("discounted_price") == 50.0

    def test_fresh_chain_per_turn(self, loopback_client):
        """Test nothing carries over from one turn to the next."""
        orchestrator = Orchestrator(loopback_client)
        orchestrator.execute([cart(("1", 3))])

        steps = orchestrator.execute([call("apply_discount", total_price=100, discount_percentage=50)])

        assert steps[0].propagated == {}
        assert steps[0].result.number("discounted_price") == 50.0

    def test_custom_rule(self, loopback_client):
        """Test extra chain rules are honoured."""
        orchestrator = Orchestrator(loopback_client, rules=[ChainRule(tool="apply_discount", field="price")])
        steps = orchestrator.execute([
            call("get_price", product_id="2"),
            call("apply_discount", total_price=500, discount_percentage=50),
        ])

        assert steps[1].propagated == {"price": 500.0}


class TestFailures:
    """Tests for failing steps."""

    def test_error_result_does_not_stop_turn(self, loopback_client):
        """Test later steps run after a business-rule failure."""
        steps = Orchestrator(loopback_client).execute([
            call("get_price", product_id="99"),
            call("get_price", product_id="1"),
        ])

        assert steps[0].ok is True
        assert steps[0].result.success is False
        assert steps[1].result.message == "The price of Laptop is $1000.00"

    def test_parse_error_skips_dispatch(self, loopback_client, loopback):
        """Test an invocation with unusable arguments is never sent."""
        loopback_client.handshake()
        steps = Orchestrator(loopback_client).execute([
            Invocation(tool_name="get_price", parse_error="Error parsing arguments: bad"),
            call("get_price", product_id="3"),
        ])

        assert steps[0].error_kind == "arguments"
        assert steps[1].ok is True
        assert len(loopback.sent) == 2

    def test_malformed_reply(self, scripted):
        """Test a truncated reply is a protocol failure and the turn continues."""
        good = json.dumps({"jsonrpc": "2.0", "id": 2, "result": CallResult.text("fine").to_wire()})
        client, _ = scripted(['{"jsonrpc": "2.0", "id": 1, "result": {"cont', good])

        steps = Orchestrator(client).execute([call("help"), call("help")])

        assert steps[0].error_kind == "protocol"
        assert steps[1].result.message == "fine"

    def test_transport_failure(self, scripted):
        """Test a closed stream is a transport failure recorded on the step."""
        client, _ = scripted([TransportClosedError("gone")])

        steps = Orchestrator(client).execute([cart(("1", 1)), call("help")])

        assert steps[0].error_kind == "transport"
        assert steps[1].error_kind == "transport"

    def test_failed_step_keeps_chain(self, scripted):
        """Test a protocol failure does not clear the previous total."""
        total = json.dumps({"jsonrpc": "2.0", "id": 1, "result": CallResult.structured(
            {"success": True, "total_price": 800.0}).to_wire()})
        done = json.dumps({"jsonrpc": "2.0", "id": 3, "result": CallResult.structured(
            {"success": True}).to_wire()})
        client, transport = scripted([total, "garbage", done])

        Orchestrator(client).execute([
            cart(("1", 1)),
            call("help"),
            call("apply_discount", total_price=1, discount_percentage=50),
        ])

        assert json.loads(transport.sent[2])["params"]["arguments"]["total_price"] == 800.0


class TestTurns:
    """Tests for run_turn."""

    def test_reply_text_without_tools(self, loopback_client):
        """Test a translator that picks no tool returns its own text."""
        orchestrator = Orchestrator(loopback_client, translator=FixedTranslator(reply_text="Hello!"))
        turn = orchestrator.run_turn("hi")

        assert turn.steps == []
        assert turn.output == "Hello!"

    def test_translator_sees_tools(self, loopback_client):
        """Test the translator receives the advertised tools."""
        translator = FixedTranslator()
        Orchestrator(loopback_client, translator=translator).run_turn("hi")

        assert translator.seen[0][1] == ["help", "get_price", "calculate_total", "apply_discount"]

    def test_presenter(self, loopback_client):
        """Test the final message is passed through the presenter."""
        orchestrator = Orchestrator(
            loopback_client,
            translator=FixedTranslator([call("get_price", product_id="1")]),
            presenter=EchoPresenter(),
        )
        turn = orchestrator.run_turn("laptop?")

        assert turn.presented_message == "[polished] The price of Laptop is $1000.00"
        assert turn.output == turn.presented_message

    def test_presenter_failure_falls_back(self, loopback_client):
        """Test a failing presenter shows the plain message."""
        orchestrator = Orchestrator(
            loopback_client,
            translator=FixedTranslator([call("get_price", product_id="1")]),
            presenter=BrokenPresenter(),
        )
        turn = orchestrator.run_turn("laptop?")

        assert turn.output == "The price of Laptop is $1000.00"

    def test_requires_translator(self, loopback_client):
        """Test run_turn without a translator is refused."""
        with pytest.raises(ValueError):
            Orchestrator(loopback_client).run_turn("hi")

    def test_on_step_and_phase(self, loopback_client):
        """Test each step is reported and the orchestrator ends idle."""
        seen = []
        orchestrator = Orchestrator(loopback_client, on_step=seen.append)
        orchestrator.execute([call("help"), call("get_price", product_id="2")])

        assert [s.index for s in seen] == [0, 1]
        assert orchestrator.phase is TurnPhase.IDLE

    def test_tools_fetched_once(self, loopback_client, loopback):
        """Test the tool list is cached."""
        orchestrator = Orchestrator(loopback_client)
        orchestrator.tools()
        orchestrator.tools()
        assert len(loopback.sent) == 1
