"""Tests for the command-line client's event building and rendering."""
from client_example import build_handshake, build_post, format_event, parse_input


def test_build_events():
    assert build_handshake("tok") == {"t": "hi", "token": "tok"}
    assert build_post("hi") == {"t": "post", "message": {"content": "hi"}}
    assert build_post("hi", 123456) == {"t": "post", "message": {"content": "hi", "parentId": 123456}}


def test_parse_input():
    assert parse_input("  hello there ") == build_post("hello there")
    assert parse_input("/reply 123456 sounds good") == build_post("sounds good", 123456)
    assert parse_input("/reply abc text") is None
    assert parse_input("/reply 123456") is None
    assert parse_input("   ") is None


def test_format_event():
    new_message = {"t": "nm", "message": {"id": 123456, "authorName": "alice", "content": "hi", "parentId": None}}
    assert format_event(new_message) == "[123456] alice: hi"
    assert format_event({"t": "ucu", "count": 3}) == "3 users online"
    assert format_event({"t": "post", "success": True}) is None
    assert format_event({"t": "hi", "success": False, "error": "invalid token"}) == "hi failed: invalid token"
    assert format_event({"t": "ping"}) == "Unknown event: {'t': 'ping'}"
