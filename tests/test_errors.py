"""Unit tests for upstream error mapping."""

from __future__ import annotations

import httpx
import pytest

from services.dify.errors import (
    BAD_REQUEST_MESSAGES,
    GENERIC_MESSAGE,
    NOT_FOUND_MESSAGE,
    TIMEOUT_MESSAGE,
    UpstreamError,
    user_message_for,
)


@pytest.mark.parametrize("code", sorted(BAD_REQUEST_MESSAGES))
def test_known_bad_request_codes_have_distinct_messages(code: str) -> None:
    assert user_message_for(400, code) == BAD_REQUEST_MESSAGES[code]


def test_bad_request_messages_are_unique() -> None:
    assert len(set(BAD_REQUEST_MESSAGES.values())) == len(BAD_REQUEST_MESSAGES)


def test_not_found_maps_to_new_chat_hint() -> None:
    assert user_message_for(404, "not_found") == NOT_FOUND_MESSAGE


def test_unknown_status_falls_back_to_generic() -> None:
    assert user_message_for(500, "internal") == GENERIC_MESSAGE
    assert user_message_for(400, "something_new") == GENERIC_MESSAGE


def test_timeout_message() -> None:
    assert UpstreamError.timeout().user_message() == TIMEOUT_MESSAGE


def test_from_response_reads_code_and_message() -> None:
    response = httpx.Response(400, json={"code": "provider_quota_exceeded", "message": "quota", "status": 400})
    exc = UpstreamError.from_response(response)
    assert (exc.status, exc.code, exc.message) == (400, "provider_quota_exceeded", "quota")


def test_from_response_tolerates_non_json_body() -> None:
    exc = UpstreamError.from_response(httpx.Response(502, text="<html>bad gateway</html>"))
    assert exc.status == 502
    assert exc.code == ""
    assert exc.user_message() == GENERIC_MESSAGE
