# Overview: Pytest coverage for the best-effort notification dispatcher and push sender.

import atexit

import httpx
import pytest

from marketpay import create_app
from marketpay.extensions import notifications
from marketpay.services.notification_service import PushSender, _deliver

from conftest import RecordingSender, TEST_CONFIG


class TestDispatch:

    def test_payload_shape(self, db_session, sender, tenant):
        notifications.notify_payment_verified(tenant.id, 12500, "PAYABC123XYZ9")

        tenant_id, payload = sender.sent[0]
        assert tenant_id == tenant.id
        assert payload["title"] == "Payment received"
        assert "12,500 RWF" in payload["body"]
        assert "PAYABC123XYZ9" in payload["body"]
        assert payload["type"] == "payment"

    def test_sender_failure_is_swallowed(self, db_session, sender, caplog):
        sender.fail = True
        assert notifications.dispatch(7, {"title": "t", "body": "b"}) is None
        assert "Failed to deliver notification" in caplog.text

    def test_no_sender_logs_and_skips(self, app, caplog):
        with caplog.at_level("INFO"):
            assert _deliver(app, None, 3, {"body": "hello"}) is False
        assert "Push delivery disabled" in caplog.text

    def test_thread_mode_runs_off_request_thread(self):
        app = create_app({**TEST_CONFIG, "NOTIFICATION_DISPATCH_MODE": "thread"})
        recorder = RecordingSender()
        with app.app_context():
            notifications.set_sender(recorder)
            future = notifications.dispatch(5, {"body": "async"})
            assert future is not None
            assert future.result(timeout=5) is True
            notifications.shutdown()
        assert recorder.sent == [(5, {"body": "async"})]

    def test_thread_mode_failure_never_reaches_caller(self):
        app = create_app({**TEST_CONFIG, "NOTIFICATION_DISPATCH_MODE": "thread"})
        with app.app_context():
            notifications.set_sender(RecordingSender(fail=True))
            future = notifications.dispatch(5, {"body": "async"})
            assert future.result(timeout=5) is False
            notifications.shutdown()

    def test_worker_pool_shut_down_at_exit(self, monkeypatch):
        registered = []
        monkeypatch.setattr(atexit, "register", lambda func, *args, **kwargs: registered.append((func, kwargs)))

        app = create_app({**TEST_CONFIG, "NOTIFICATION_DISPATCH_MODE": "thread"})
        executor = app.extensions["marketpay_notifications"].executor

        assert (executor.shutdown, {"wait": True}) in registered
        executor.shutdown(wait=True)


class TestPushSender:

    def test_posts_to_push_endpoint(self, monkeypatch):
        captured = {}

        def fake_post(url, json, timeout):
            captured.update(url=url, json=json, timeout=timeout)
            return httpx.Response(200, request=httpx.Request("POST", url))

        monkeypatch.setattr(httpx, "post", fake_post)
        PushSender("https://push.example/api/send", timeout=3).send(9, {"title": "x"})

        assert captured["url"] == "https://push.example/api/send"
        assert captured["json"] == {"userId": "9", "notification": {"title": "x"}}
        assert captured["timeout"] == 3

    def test_non_2xx_raises(self, monkeypatch):
        def fake_post(url, json, timeout):
            return httpx.Response(503, request=httpx.Request("POST", url))

        monkeypatch.setattr(httpx, "post", fake_post)
        with pytest.raises(httpx.HTTPStatusError):
            PushSender("https://push.example/api/send").send(9, {"title": "x"})
