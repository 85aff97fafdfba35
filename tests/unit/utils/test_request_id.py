"""Unit tests for request correlation ids."""

import re

import pytest

from arrgate.utils.request_id import (
    generate_request_id,
    is_valid_request_id,
    resolve_request_id,
)


@pytest.mark.parametrize("value", ["abc", "abc-123_DEF", "a" * 64])
def test_valid_request_id(value):
    assert is_valid_request_id(value) is True


@pytest.mark.parametrize("value", [None, "", "a" * 65, "has space", "semi;colon", "ünïcode"])
def test_invalid_request_id(value):
    assert is_valid_request_id(value) is False


def test_generate_request_id():
    first = generate_request_id()

    assert re.fullmatch(r"[0-9a-f]{32}", first)
    assert generate_request_id() != first


def test_resolve_request_id_echoes_valid_value():
    assert resolve_request_id("client-id-1") == "client-id-1"


def test_resolve_request_id_replaces_invalid_value():
    resolved = resolve_request_id("bad\r\nid")

    assert resolved != "bad\r\nid"
    assert len(resolved) == 32
