"""Moderation gate for group chat.

Checks run in a fixed order: group state, membership, mute, ban, content.
The content check asks an OpenAI-compatible chat-completions endpoint and
falls back to the blocked-term list whenever that call cannot be used.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from sqlalchemy.exc import SQLAlchemyError

from gatherly import repo
from gatherly.config import (
    AUTO_MUTE_MINUTES,
    BLOCKED_TERMS,
    CHAT_FREEZE_FOLLOWS_CLOCK,
    CLASSIFIER_API_KEY,
    CLASSIFIER_MODEL,
    CLASSIFIER_TIMEOUT_SECONDS,
    CLASSIFIER_URL,
    MAX_MESSAGE_LENGTH,
)
from gatherly.errors import NotFound, PermissionDenied, ValidationFailed
from gatherly.services.events import emit_product_event
from gatherly.services.freeze import is_frozen, to_utc

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a content moderation system. Analyze the following message and determine if it violates "
    "community guidelines. Flag harassment, hate speech, threats, sexual content, spam, self-harm "
    "encouragement and sharing of personal information. Respond ONLY with JSON in this format: "
    '{"flagged": true/false, "categories": ["category1"], "reason": "brief explanation"}'
)

FLAGGED_MESSAGE = (
    f"Your message was flagged for violating community guidelines. You have been muted for {AUTO_MUTE_MINUTES} minutes."
)
FROZEN_MESSAGE = "This group chat has been frozen by an administrator."
BANNED_MESSAGE = "Your account has been banned."

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ClassifierUnavailable(Exception):
    pass


@dataclass
class GateDecision:
    allowed: bool
    reason: str | None = None
    message: str | None = None
    moderated: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ChatCompletionsClassifier:
    def __init__(self, url: str, api_key: str, model: str, timeout: float):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def classify(self, content: str) -> dict[str, Any]:
        try:
            res = requests.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": content},
                    ],
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ClassifierUnavailable(f"request failed: {exc}") from exc

        if not res.ok:
            raise ClassifierUnavailable(f"classifier returned HTTP {res.status_code}")

        try:
            answer = res.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ClassifierUnavailable("unexpected classifier response shape") from exc

        match = _JSON_OBJECT.search(str(answer or ""))
        if not match:
            raise ClassifierUnavailable("classifier answer contained no JSON object")
        try:
            verdict = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ClassifierUnavailable("classifier answer was not valid JSON") from exc
        if not isinstance(verdict, dict) or not isinstance(verdict.get("flagged"), bool):
            raise ClassifierUnavailable("classifier answer missing boolean 'flagged'")

        categories = verdict.get("categories")
        return {
            "flagged": verdict["flagged"],
            "categories": [str(c) for c in categories] if isinstance(categories, list) else [],
            "reason": str(verdict.get("reason") or ""),
            "source": "classifier",
        }


def default_classifier() -> ChatCompletionsClassifier | None:
    if not CLASSIFIER_URL or not CLASSIFIER_API_KEY:
        return None
    return ChatCompletionsClassifier(CLASSIFIER_URL, CLASSIFIER_API_KEY, CLASSIFIER_MODEL, CLASSIFIER_TIMEOUT_SECONDS)


def blocked_term_check(content: str, terms: list[str] | None = None) -> dict[str, Any]:
    lowered = content.lower()
    for term in BLOCKED_TERMS if terms is None else terms:
        if term and term.lower() in lowered:
            return {
                "flagged": True,
                "categories": ["profanity"],
                "reason": f"Contains prohibited term: {term}",
                "source": "blocked_terms",
            }
    return {"flagged": False, "categories": [], "reason": "", "source": "blocked_terms"}


def classify_content(content: str, classifier=None) -> dict[str, Any]:
    classifier = classifier or default_classifier()
    if classifier is None:
        return blocked_term_check(content)
    try:
        return classifier.classify(content)
    except ClassifierUnavailable as exc:
        logger.warning("[moderation] classifier unavailable, using blocked terms: %s", exc)
        return blocked_term_check(content)


def validate_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationFailed("content must be a non-empty string")
    text = content.strip()
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationFailed(f"content must be at most {MAX_MESSAGE_LENGTH} characters")
    return text


def _remaining_minutes(until: Any, now: datetime) -> int:
    seconds = (to_utc(until) - now).total_seconds()
    return max(1, math.ceil(seconds / 60.0))


def _apply_auto_sanction(user_id: str, group_id: str, content: str, verdict: dict[str, Any], now: datetime) -> None:
    # The deny stands even when a sanction write fails.
    try:
        repo.create_report(
            reporter_id=None,
            reported_user_id=user_id,
            group_id=group_id,
            reason="auto_moderation",
            details=content[:500],
            moderation_flags=verdict,
        )
    except SQLAlchemyError as exc:
        logger.error("[moderation] report write failed user=%s group=%s: %s", user_id, group_id, exc)
    try:
        repo.upsert_mute(user_id, group_id, now + timedelta(minutes=AUTO_MUTE_MINUTES), reason="auto_moderation")
    except SQLAlchemyError as exc:
        logger.error("[moderation] auto-mute write failed user=%s group=%s: %s", user_id, group_id, exc)


def evaluate_message(
    user_id: str,
    group_id: str,
    content: str,
    now: datetime | None = None,
    classifier=None,
) -> GateDecision:
    now = to_utc(now or datetime.now(timezone.utc))
    content = validate_content(content)

    group = repo.get_group(group_id)
    if not group:
        raise NotFound("Group not found")
    if not repo.is_group_member(group_id, user_id):
        raise PermissionDenied("You are not a member of this group")

    if group.get("frozen"):
        return GateDecision(allowed=False, reason="group_frozen", message=FROZEN_MESSAGE)
    if CHAT_FREEZE_FOLLOWS_CLOCK:
        event = repo.get_event(str(group["event_id"]))
        if event and is_frozen(event, now):
            return GateDecision(allowed=False, reason="group_frozen", message=FROZEN_MESSAGE)

    mute = repo.get_active_mute(user_id, group_id, now)
    if mute:
        minutes = _remaining_minutes(mute["muted_until"], now)
        return GateDecision(allowed=False, reason="user_muted", message=f"You are muted for {minutes} more minutes.")

    if repo.get_active_ban(user_id, now):
        return GateDecision(allowed=False, reason="user_banned", message=BANNED_MESSAGE)

    verdict = classify_content(content, classifier)
    if verdict["flagged"]:
        _apply_auto_sanction(user_id, group_id, content, verdict, now)
        logger.info(
            "[moderation] flagged user=%s group=%s source=%s categories=%s",
            user_id,
            group_id,
            verdict.get("source"),
            ",".join(verdict.get("categories") or []),
        )
        emit_product_event(
            event_name="message_flagged",
            user_id=user_id,
            group_id=group_id,
            properties={"categories": verdict.get("categories") or [], "source": verdict.get("source")},
        )
        return GateDecision(allowed=False, reason="content_flagged", message=FLAGGED_MESSAGE)

    return GateDecision(allowed=True)


def send_message(
    user_id: str,
    group_id: str,
    content: str,
    now: datetime | None = None,
    classifier=None,
) -> dict[str, Any]:
    decision = evaluate_message(user_id, group_id, content, now=now, classifier=classifier)
    if not decision.allowed:
        return decision.to_dict()
    message = repo.create_message(group_id, user_id, validate_content(content), moderated=True)
    return {"success": True, "message": message}


def list_messages(user_id: str, group_id: str) -> list[dict[str, Any]]:
    if not repo.get_group(group_id):
        raise NotFound("Group not found")
    if not repo.is_group_member(group_id, user_id):
        raise PermissionDenied("You are not a member of this group")
    return repo.list_group_messages(group_id)
