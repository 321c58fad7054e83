"""
Test suite for app/relay/models.py

Coverage targets:
- ChangeEnvelope wire format (camelCase, omitted optionals)
- Envelope validation (missing modelId, bad method)
- RelayOptions parsing (camelCase keys, type alias, invalid role/filters)
- snapshot / record_id helpers
"""

import json

import pytest
from pydantic import BaseModel

from app.relay.models import (
    ChangeEnvelope,
    MethodName,
    RelayOptions,
    RelayRole,
    record_id,
    snapshot,
)
from core.exceptions import ConfigurationError, EnvelopeDecodeError


class TestChangeEnvelope:
    def test_wire_format_uses_camel_case(self):
        envelope = ChangeEnvelope(
            model_name="Customer",
            method_name=MethodName.UPDATE,
            model_id="42",
            data={"id": "42", "name": "James Bond"},
            update_data={"name": "James Bond"},
            data_before_update={"id": "42", "name": "Bond"},
            user_id="m",
        )

        payload = json.loads(envelope.to_wire())

        assert payload == {
            "modelName": "Customer",
            "methodName": "update",
            "modelId": "42",
            "data": {"id": "42", "name": "James Bond"},
            "updateData": {"name": "James Bond"},
            "dataBeforeUpdate": {"id": "42", "name": "Bond"},
            "userId": "m",
        }

    def test_absent_optionals_are_omitted(self):
        envelope = ChangeEnvelope(
            model_name="Order", method_name="delete", model_id="3", data={"id": "3"}
        )

        payload = json.loads(envelope.to_wire())

        assert set(payload) == {"modelName", "methodName", "modelId", "data"}

    def test_from_wire_accepts_camel_case(self):
        raw = b'{"modelName":"Customer","methodName":"create","modelId":"42","data":{"id":"42"},"userId":"u1"}'

        envelope = ChangeEnvelope.from_wire(raw)

        assert envelope.model_name == "Customer"
        assert envelope.method_name is MethodName.CREATE
        assert envelope.user_id == "u1"
        assert envelope.update_data is None

    def test_numeric_model_id_is_kept(self):
        envelope = ChangeEnvelope.from_wire(
            b'{"modelName":"Order","methodName":"create","modelId":7,"data":{}}'
        )
        assert envelope.model_id == 7

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b'{"modelName":"Customer","methodName":"create","data":{}}',
            b'{"modelName":"Customer","methodName":"create","modelId":"","data":{}}',
            b'{"modelName":"Customer","methodName":"upsert","modelId":"1","data":{}}',
            b'{"modelName":"","methodName":"create","modelId":"1","data":{}}',
        ],
    )
    def test_invalid_payloads_raise_decode_error(self, raw):
        with pytest.raises(EnvelopeDecodeError):
            ChangeEnvelope.from_wire(raw)


class TestRelayOptions:
    def test_parses_camel_case_keys(self):
        options = RelayOptions.parse(
            {
                "serviceName": "billing",
                "type": "server",
                "projectId": "proj",
                "modelsToBroadcast": ["Customer"],
            }
        )

        assert options.service_name == "billing"
        assert options.role is RelayRole.SERVER
        assert options.project_id == "proj"
        assert options.models_to_broadcast == ["Customer"]

    def test_parses_snake_case_keys(self):
        def on_event(*args):
            pass

        options = RelayOptions.parse(
            {
                "service_name": "shipping",
                "role": "client",
                "project_id": "proj",
                "models_to_subscribe": ["Order"],
                "event_fn": on_event,
            }
        )

        assert options.role is RelayRole.CLIENT
        assert options.event_fn is on_event

    def test_role_is_optional(self):
        options = RelayOptions.parse({"serviceName": "billing"})
        assert options.role is None

    def test_invalid_role(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RelayOptions.parse({"serviceName": "billing", "role": "broker"})

        assert 'Role "broker" is not valid' in str(exc_info.value)

    def test_unconfigured_is_not_a_requestable_role(self):
        with pytest.raises(ConfigurationError):
            RelayOptions.parse({"serviceName": "billing", "role": "unconfigured"})

    def test_filters_must_be_a_list(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RelayOptions.parse({"serviceName": "billing", "filters": lambda *a: True})

        assert "filters must be a list of functions" in str(exc_info.value)

    def test_filters_tuple_becomes_list(self):
        options = RelayOptions.parse({"serviceName": "billing", "filters": (print,)})
        assert options.filters == [print]

    def test_parse_passes_instances_through(self):
        options = RelayOptions(service_name="billing")
        assert RelayOptions.parse(options) is options

    def test_parse_requires_options(self):
        with pytest.raises(ConfigurationError):
            RelayOptions.parse(None)


class TestHelpers:
    def test_snapshot_is_a_deep_copy(self):
        record = {"id": "1", "tags": ["a"]}
        copy = snapshot(record)
        record["tags"].append("b")

        assert copy == {"id": "1", "tags": ["a"]}

    def test_snapshot_of_pydantic_model(self):
        class Customer(BaseModel):
            id: str
            name: str

        assert snapshot(Customer(id="42", name="James Bond")) == {
            "id": "42",
            "name": "James Bond",
        }

    def test_snapshot_none(self):
        assert snapshot(None) is None

    def test_record_id(self):
        class Row:
            id = "9"

        assert record_id({"id": "1"}) == "1"
        assert record_id(Row()) == "9"
        assert record_id({}) is None
        assert record_id(None) is None
