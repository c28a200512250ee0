"""Tests for HTTP retry helper."""

import httpx
import pytest

from positivenrg.services.http_service import request_with_retries


def test_request_with_retries_retries_on_status():
    req = httpx.Request("POST", "https://example.com")
    responses = [
        httpx.Response(503, request=req),
        httpx.Response(200, json={"ok": True}, request=req),
    ]
    calls = {"count": 0}

    def request_fn():
        calls["count"] += 1
        return responses.pop(0)

    response = request_with_retries(
        request_fn,
        max_attempts=2,
        base_delay=0,
        max_delay=0,
    )

    assert calls["count"] == 2
    assert response.status_code == 200


def test_request_with_retries_retries_on_request_error():
    req = httpx.Request("POST", "https://example.com")
    calls = {"count": 0}

    def request_fn():
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("boom", request=req)
        return httpx.Response(200, json={"ok": True}, request=req)

    response = request_with_retries(
        request_fn,
        max_attempts=2,
        base_delay=0,
        max_delay=0,
    )

    assert calls["count"] == 2
    assert response.status_code == 200


def test_request_with_retries_raises_after_max_attempts():
    req = httpx.Request("POST", "https://example.com")
    calls = {"count": 0}

    def request_fn():
        calls["count"] += 1
        raise httpx.ConnectError("boom", request=req)

    with pytest.raises(httpx.RequestError):
        request_with_retries(
            request_fn,
            max_attempts=2,
            base_delay=0,
            max_delay=0,
        )

    assert calls["count"] == 2


def test_request_with_retries_returns_last_retryable_response():
    req = httpx.Request("GET", "https://example.com")
    calls = {"count": 0}

    def request_fn():
        calls["count"] += 1
        return httpx.Response(429, request=req)

    response = request_with_retries(request_fn, max_attempts=3, base_delay=0, max_delay=0)

    assert calls["count"] == 3
    assert response.status_code == 429


def test_request_with_retries_does_not_retry_client_errors():
    req = httpx.Request("GET", "https://example.com")
    calls = {"count": 0}

    def request_fn():
        calls["count"] += 1
        return httpx.Response(404, request=req)

    response = request_with_retries(request_fn, base_delay=0, max_delay=0)

    assert calls["count"] == 1
    assert response.status_code == 404
