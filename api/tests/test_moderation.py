from datetime import timedelta

import pytest
import requests
from sqlalchemy.exc import OperationalError

from gatherly.errors import NotFound, PermissionDenied, ValidationFailed
from gatherly.services import moderation
from gatherly.services.moderation import (
    ChatCompletionsClassifier,
    ClassifierUnavailable,
    blocked_term_check,
    evaluate_message,
    send_message,
)


class _StaticClassifier:
    def __init__(self, verdict):
        self.verdict = verdict
        self.calls = []

    def classify(self, content):
        self.calls.append(content)
        return dict(self.verdict)


class _DownClassifier:
    def classify(self, content):
        raise ClassifierUnavailable("timeout")


CLEAN = _StaticClassifier({"flagged": False, "categories": [], "reason": "", "source": "classifier"})


@pytest.fixture(autouse=True)
def no_default_classifier(monkeypatch):
    monkeypatch.setattr(moderation, "default_classifier", lambda: None)


def _group(store, *, frozen=False, starts_in_hours=48):
    event_id = store.add_event(starts_in_hours=starts_in_hours)
    user = store.add_profile()
    peer = store.add_profile()
    group_id = store.add_group(event_id, [user, peer], frozen=frozen)
    return user, group_id


def test_clean_message_is_allowed(store, now):
    user, group_id = _group(store)
    decision = evaluate_message(user, group_id, "See you at the bar!", now=now, classifier=CLEAN)
    assert decision.allowed is True
    assert decision.to_dict() == {"allowed": True, "moderated": True}


def test_missing_group_and_non_member(store, now):
    user, group_id = _group(store)
    with pytest.raises(NotFound):
        evaluate_message(user, "00000000-0000-0000-0000-000000000000", "hi", now=now, classifier=CLEAN)
    with pytest.raises(PermissionDenied):
        evaluate_message(store.add_profile(), group_id, "hi", now=now, classifier=CLEAN)


def test_content_validation(store, now):
    user, group_id = _group(store)
    with pytest.raises(ValidationFailed):
        evaluate_message(user, group_id, "   ", now=now, classifier=CLEAN)
    with pytest.raises(ValidationFailed):
        evaluate_message(user, group_id, "x" * 5001, now=now, classifier=CLEAN)
    assert evaluate_message(user, group_id, "x" * 5000, now=now, classifier=CLEAN).allowed is True


def test_frozen_group_denies_before_anything_else(store, now):
    user, group_id = _group(store, frozen=True)
    store.upsert_mute(user, group_id, now + timedelta(minutes=5), "auto_moderation")
    classifier = _StaticClassifier({"flagged": True, "categories": ["spam"], "reason": "", "source": "classifier"})

    decision = evaluate_message(user, group_id, "hello", now=now, classifier=classifier)
    assert decision.allowed is False
    assert decision.reason == "group_frozen"
    assert decision.message == "This group chat has been frozen by an administrator."
    assert classifier.calls == []


def test_clock_freeze_closes_chat_only_when_enabled(store, now, monkeypatch):
    user, group_id = _group(store, starts_in_hours=1)
    assert evaluate_message(user, group_id, "hi", now=now, classifier=CLEAN).allowed is True

    monkeypatch.setattr(moderation, "CHAT_FREEZE_FOLLOWS_CLOCK", True)
    decision = evaluate_message(user, group_id, "hi", now=now, classifier=CLEAN)
    assert decision.reason == "group_frozen"


def test_active_mute_reports_remaining_minutes(store, now):
    user, group_id = _group(store)
    store.upsert_mute(user, group_id, now + timedelta(minutes=4), "auto_moderation")
    decision = evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN)
    assert decision.allowed is False
    assert decision.reason == "user_muted"
    assert decision.message == "You are muted for 4 more minutes."

    store.upsert_mute(user, group_id, now + timedelta(minutes=3, seconds=10), "auto_moderation")
    decision = evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN)
    assert decision.message == "You are muted for 4 more minutes."


def test_expired_mute_is_ignored(store, now):
    user, group_id = _group(store)
    store.upsert_mute(user, group_id, now - timedelta(seconds=1), "auto_moderation")
    assert evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN).allowed is True


def test_banned_user_is_denied(store, now):
    user, group_id = _group(store)
    store.create_ban(user, permanent=False, banned_until=now + timedelta(days=1), reason="spam", banned_by=None)
    decision = evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN)
    assert decision.reason == "user_banned"
    assert decision.message == "Your account has been banned."


def test_expired_ban_is_ignored_and_permanent_ban_applies(store, now):
    user, group_id = _group(store)
    store.create_ban(user, permanent=False, banned_until=now - timedelta(days=1), reason=None, banned_by=None)
    assert evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN).allowed is True

    store.create_ban(user, permanent=True, banned_until=None, reason=None, banned_by=None)
    assert evaluate_message(user, group_id, "hello", now=now, classifier=CLEAN).reason == "user_banned"


def test_flagged_content_creates_report_and_mute(store, now):
    user, group_id = _group(store)
    classifier = _StaticClassifier({"flagged": True, "categories": ["harassment"], "reason": "insult", "source": "classifier"})

    decision = evaluate_message(user, group_id, "you are awful", now=now, classifier=classifier)
    assert decision.allowed is False
    assert decision.reason == "content_flagged"
    assert decision.message == (
        "Your message was flagged for violating community guidelines. You have been muted for 10 minutes."
    )

    assert len(store.reports) == 1
    report = store.reports[0]
    assert report["reporter_id"] is None
    assert report["reported_user_id"] == user
    assert report["reason"] == "auto_moderation"
    assert report["moderation_flags"]["categories"] == ["harassment"]
    assert store.mutes[(user, group_id)]["muted_until"] == now + timedelta(minutes=10)

    follow_up = evaluate_message(user, group_id, "sorry", now=now + timedelta(minutes=1), classifier=CLEAN)
    assert follow_up.reason == "user_muted"
    assert follow_up.message == "You are muted for 9 more minutes."


def test_classifier_outage_falls_back_to_blocked_terms(store, now):
    user, group_id = _group(store)
    decision = evaluate_message(user, group_id, "this is SHIT", now=now, classifier=_DownClassifier())
    assert decision.reason == "content_flagged"
    assert store.reports[0]["moderation_flags"]["source"] == "blocked_terms"
    assert store.mutes[(user, group_id)]["muted_until"] == now + timedelta(minutes=10)

    other, other_group = _group(store)
    assert evaluate_message(other, other_group, "lovely evening", now=now, classifier=_DownClassifier()).allowed is True


def test_unconfigured_classifier_uses_blocked_terms(store, now):
    user, group_id = _group(store)
    assert evaluate_message(user, group_id, "kys", now=now).reason == "content_flagged"


def test_blocked_term_check_is_substring_and_case_insensitive():
    assert blocked_term_check("What the FUCK")["flagged"] is True
    assert blocked_term_check("first class seats")["flagged"] is False
    assert blocked_term_check("anything", terms=["thing"])["flagged"] is True


def test_send_persists_only_allowed_messages(store, now):
    user, group_id = _group(store)
    out = send_message(user, group_id, "  see you soon  ", now=now, classifier=CLEAN)
    assert out["success"] is True
    assert out["message"]["content"] == "see you soon"
    assert len(store.messages) == 1

    denied = send_message(user, group_id, "shit", now=now, classifier=_DownClassifier())
    assert denied["allowed"] is False
    assert denied["reason"] == "content_flagged"
    assert len(store.messages) == 1


class _FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


def _chat_body(text):
    return {"choices": [{"message": {"content": text}}]}


def test_chat_completions_classifier_parses_wrapped_json(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json, timeout=timeout)
        return _FakeResponse(200, _chat_body('```json\n{"flagged": true, "categories": ["hate"], "reason": "slur"}\n```'))

    monkeypatch.setattr(moderation.requests, "post", fake_post)
    clf = ChatCompletionsClassifier("https://gateway.test/v1/chat/completions", "key", "model-x", 2.5)
    verdict = clf.classify("some text")

    assert verdict == {"flagged": True, "categories": ["hate"], "reason": "slur", "source": "classifier"}
    assert captured["timeout"] == 2.5
    assert captured["headers"]["Authorization"] == "Bearer key"
    assert captured["json"]["model"] == "model-x"
    assert captured["json"]["messages"][1] == {"role": "user", "content": "some text"}


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(503, _chat_body('{"flagged": false}')),
        _FakeResponse(200, None),
        _FakeResponse(200, {"choices": []}),
        _FakeResponse(200, _chat_body("I cannot decide")),
        _FakeResponse(200, _chat_body('{"flagged": "maybe"}')),
    ],
)
def test_chat_completions_classifier_unusable_answers(monkeypatch, response):
    monkeypatch.setattr(moderation.requests, "post", lambda *a, **kw: response)
    clf = ChatCompletionsClassifier("https://gateway.test", "key", "m", 1)
    with pytest.raises(ClassifierUnavailable):
        clf.classify("text")


def test_chat_completions_classifier_timeout(monkeypatch):
    def slow_post(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(moderation.requests, "post", slow_post)
    with pytest.raises(ClassifierUnavailable):
        ChatCompletionsClassifier("https://gateway.test", "key", "m", 0.1).classify("text")


def test_flag_still_denies_when_mute_write_fails(store, now, monkeypatch):
    user, group_id = _group(store)

    def broken_mute(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("db down"))

    monkeypatch.setattr(moderation.repo, "upsert_mute", broken_mute)
    decision = evaluate_message(user, group_id, "this is SHIT", now=now, classifier=_DownClassifier())
    assert decision.allowed is False
    assert decision.reason == "content_flagged"
    assert len(store.reports) == 1
    assert store.mutes == {}


def test_flag_still_mutes_when_report_write_fails(store, now, monkeypatch):
    user, group_id = _group(store)

    def broken_report(**kwargs):
        raise OperationalError("INSERT", {}, Exception("db down"))

    monkeypatch.setattr(moderation.repo, "create_report", broken_report)
    decision = evaluate_message(user, group_id, "this is SHIT", now=now, classifier=_DownClassifier())
    assert decision.reason == "content_flagged"
    assert store.mutes[(user, group_id)]["muted_until"] == now + timedelta(minutes=10)
