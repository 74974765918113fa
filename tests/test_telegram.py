import asyncio

import requests

from futures_advisor.telegram import (
    MemoryNotifier, NullNotifier, TelegramNotifier, send_telegram_message
)


class FakeResponse:
    def __init__(self, ok=True, status_code=200, payload=None, text=""):
        self.ok = ok
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_send_posts_to_bot_api(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse()

    monkeypatch.setattr("futures_advisor.telegram.requests.post", fake_post)
    assert send_telegram_message("TOKEN", "42", "hello")

    url, payload, timeout = calls[0]
    assert url == "https://api.telegram.org/botTOKEN/sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["text"] == "hello"
    assert timeout == 10


def test_send_reports_api_errors(monkeypatch):
    monkeypatch.setattr(
        "futures_advisor.telegram.requests.post",
        lambda url, json=None, timeout=None: FakeResponse(ok=False, status_code=400,
                                                          payload={"description": "chat not found"})
    )
    assert send_telegram_message("TOKEN", "42", "hello") is False


def test_send_handles_network_errors(monkeypatch):
    def fake_post(url, json=None, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("futures_advisor.telegram.requests.post", fake_post)
    assert send_telegram_message("TOKEN", "42", "hello") is False


def test_notifier_runs_send_off_the_loop(monkeypatch):
    sent = []

    def fake_send(token, chat_id, text):
        sent.append((token, chat_id, text))
        return True

    monkeypatch.setattr("futures_advisor.telegram.send_telegram_message", fake_send)
    notifier = TelegramNotifier("TOKEN", "42")
    assert asyncio.run(notifier.send("⚡ Title\nBody"))
    assert sent == [("TOKEN", "42", "⚡ Title\nBody")]


def test_unconfigured_notifiers_do_not_send():
    assert not TelegramNotifier("", "42").enabled
    assert asyncio.run(TelegramNotifier("TOKEN", None).send("x")) is False
    assert not NullNotifier().enabled
    assert asyncio.run(NullNotifier().send("x")) is False


def test_memory_notifier_keeps_texts():
    notifier = MemoryNotifier()
    asyncio.run(notifier.send("one"))
    asyncio.run(notifier.send("two"))
    assert notifier.sent == ["one", "two"]
