"""Tests for the wire models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tabconsole.domain.models import (
    ClientEvent,
    CommandRequest,
    Envelope,
    OutputType,
    ServerEvent,
    TabAck,
    TabRequest,
    TerminalClosed,
    TerminalOutput,
)


class TestEnums:
    def test_client_event_names(self) -> None:
        assert {e.value for e in ClientEvent} == {
            "execute-command", "create-tab", "close-tab", "switch-tab",
        }

    def test_server_event_names(self) -> None:
        assert {e.value for e in ServerEvent} == {
            "terminal-output", "terminal-closed", "terminal-error",
            "tab-created", "tab-closed", "tab-switched",
        }


class TestRequests:
    def test_tab_request_reads_camel_case(self) -> None:
        assert TabRequest.model_validate({"tabId": "t1"}).tab_id == "t1"

    def test_tab_request_accepts_field_name(self) -> None:
        assert TabRequest(tab_id="t1").tab_id == "t1"

    def test_empty_tab_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TabRequest.model_validate({"tabId": ""})

    def test_command_requires_command(self) -> None:
        with pytest.raises(ValidationError):
            CommandRequest.model_validate({"tabId": "main"})

    def test_empty_command_is_allowed(self) -> None:
        request = CommandRequest.model_validate({"command": "", "tabId": "main"})
        assert request.command == ""

    def test_extra_fields_are_ignored(self) -> None:
        request = CommandRequest.model_validate({"command": "ls", "tabId": "t", "cols": 80})
        assert request.command == "ls"


class TestNotifications:
    def test_output_dumps_wire_names(self) -> None:
        payload = TerminalOutput(tab_id="main", output="hi\n", type=OutputType.STDOUT)
        assert payload.model_dump(mode="json", by_alias=True) == {
            "tabId": "main", "output": "hi\n", "type": "stdout",
        }

    def test_closed_allows_missing_code(self) -> None:
        payload = TerminalClosed(tab_id="t1", code=None)
        assert payload.model_dump(by_alias=True) == {"tabId": "t1", "code": None}

    def test_ack_is_frozen(self) -> None:
        ack = TabAck(tab_id="t1")
        with pytest.raises(ValidationError):
            ack.tab_id = "t2"


class TestEnvelope:
    def test_parse_json(self) -> None:
        env = Envelope.model_validate_json('{"event": "create-tab", "data": {"tabId": "t2"}}')
        assert env.event == "create-tab"
        assert env.data == {"tabId": "t2"}

    def test_data_defaults_to_empty(self) -> None:
        assert Envelope.model_validate_json('{"event": "ping"}').data == {}

    def test_missing_event_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Envelope.model_validate_json('{"data": {}}')

    def test_non_object_data_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Envelope.model_validate_json('{"event": "create-tab", "data": "t2"}')
