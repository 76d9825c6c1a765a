import pytest

from daprcallback.common import ServiceError
from daprcallback.http_events import TopicEventEnvelope

HEADER = """
    "specversion" : "1.0",
    "type" : "com.github.pull.create",
    "source" : "https://github.com/cloudevents/spec/pull",
    "subject" : "123",
    "id" : "A234-1234-1234",
    "time" : "2018-04-05T17:31:00Z",
    "comexampleextension1" : "value",
    "comexampleothervalue" : 5,
"""


def _envelope(tail):
    return "{" + HEADER + tail + "}"


@pytest.mark.parametrize(
    "tail, expected",
    [
        (
            '"datacontenttype" : "application/json", "data" : {"message":"hello"}',
            {"message": "hello"},
        ),
        (
            '"datacontenttype" : "application/json", '
            '"data" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="',
            {"message": "hello"},
        ),
        (
            '"datacontenttype" : "application/json", '
            '"data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="',
            {"message": "hello"},
        ),
        (
            '"datacontenttype" : "application/octet-stream", '
            '"data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="',
            b'{"message":"hello"}',
        ),
        (
            '"datacontenttype" : "application/json", '
            '"data" : "{\\"message\\":\\"hello\\"}"',
            {"message": "hello"},
        ),
    ],
)
def test_event_data_handling(tail, expected):
    envelope = TopicEventEnvelope.from_json(_envelope(tail))
    data, _ = envelope.get_data()
    assert data == expected


def test_envelope_fields_are_parsed():
    envelope = TopicEventEnvelope.from_json(
        _envelope('"datacontenttype" : "application/json", "data" : {"a": 1}')
    )
    assert envelope.id == "A234-1234-1234"
    assert envelope.spec_version == "1.0"
    assert envelope.type == "com.github.pull.create"
    assert envelope.source == "https://github.com/cloudevents/spec/pull"
    assert envelope.subject == "123"
    assert envelope.data_content_type == "application/json"
    assert envelope.topic == ""
    assert envelope.pubsub_name == ""


def test_raw_data_keeps_original_text():
    envelope = TopicEventEnvelope.from_json(b'{"data" : {"a": 1,  "b": [2]}}')
    assert envelope.data == b'{"a": 1,  "b": [2]}'
    data, raw = envelope.get_data()
    assert raw == b'{"a": 1,  "b": [2]}'
    assert data == {"a": 1, "b": [2]}


def test_raw_payload_keeps_data_base64():
    envelope = TopicEventEnvelope.from_json(
        '{"datacontenttype" : "application/octet-stream",'
        ' "data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="}'
    )
    assert envelope.data_content_type == "application/octet-stream"
    assert envelope.data_base64 == "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="
    data, raw = envelope.get_data()
    assert data == raw == b'{"message":"hello"}'


def test_plain_string_data_stays_string():
    envelope = TopicEventEnvelope.from_json('{"data": "hello"}')
    data, raw = envelope.get_data()
    assert data == "hello"
    assert raw == b'"hello"'


def test_no_data_gives_nothing():
    envelope = TopicEventEnvelope.from_json('{"id": "x"}')
    assert envelope.get_data() == (None, b"")


def test_field_names_match_case_insensitively():
    envelope = TopicEventEnvelope.from_json('{"ID": "abc", "PubSubName": "messages"}')
    assert envelope.id == "abc"
    assert envelope.pubsub_name == "messages"


def test_null_string_field_is_left_empty():
    envelope = TopicEventEnvelope.from_json('{"topic": null}')
    assert envelope.topic == ""


@pytest.mark.parametrize(
    "body",
    ["", "not JSON", "[1, 2]", '{"id": "a"} trailing', '{"id": 5}', '{"id" "a"}'],
)
def test_invalid_envelopes_raise(body):
    with pytest.raises(ServiceError):
        TopicEventEnvelope.from_json(body)


def test_empty_object_round_trip():
    envelope = TopicEventEnvelope.from_json("  {  }  ")
    assert envelope == TopicEventEnvelope()