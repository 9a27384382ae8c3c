"""Tests for the admin CLI."""

import pytest
import requests

import raffle_admin


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)
        self.reason = "Conflict" if status_code == 409 else "OK"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._body


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    responses = []

    def fake_request(method, url, json=None, timeout=None):
        recorded.append((method, url, json))
        return responses.pop(0)

    monkeypatch.setattr(raffle_admin.requests, "request", fake_request)
    return recorded, responses


def test_enter_posts_player_and_amount(calls):
    recorded, responses = calls
    responses.append(FakeResponse(200, {"status": "entered", "playerCount": 1}))

    code = raffle_admin.main(["--url", "http://keeper:6080/", "enter", "0xabc", "5"])

    assert code == 0
    assert recorded == [("POST", "http://keeper:6080/api/raffle/enter", {"player": "0xabc", "amount": 5})]


def test_rejected_draw_returns_error_code(calls, capsys):
    _, responses = calls
    responses.append(FakeResponse(409, {"error": "UpkeepNotNeeded", "detail": "upkeep not needed"}))

    assert raffle_admin.main(["draw"]) == 4
    assert "UpkeepNotNeeded" in capsys.readouterr().out


def test_fulfill_and_reopen_routes(calls):
    recorded, responses = calls
    responses.extend([FakeResponse(200, {"status": "fulfilled"}), FakeResponse(200, {"status": "reopened"})])

    assert raffle_admin.main(["--url", "http://k", "fulfill", "3"]) == 0
    assert raffle_admin.main(["--url", "http://k", "reopen"]) == 0
    assert [url for _, url, _ in recorded] == ["http://k/api/oracle/fulfill/3", "http://k/api/raffle/reopen"]


def test_unreachable_keeper(monkeypatch):
    def refuse(method, url, json=None, timeout=None):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(raffle_admin.requests, "request", refuse)

    assert raffle_admin.main(["status"]) == 2
