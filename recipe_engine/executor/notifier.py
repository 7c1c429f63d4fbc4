"""Completion notifications.

Best-effort and outside the critical path: `notify()` never raises.
Only terminal done/error executions produce a message.

Requires TELEGRAM_BOT_TOKEN and a chat id (per execution, or the
TELEGRAM_CHAT_ID default). APP_URL prefixes the preview link.
"""

import html
import json
import logging
import os
from datetime import datetime
from typing import Optional, Protocol

import httpx

from recipe_engine.executor.schemas import (
    Execution,
    ExecutionStatus,
    StepResult,
    StepResultStatus,
)

logger = logging.getLogger(__name__)

TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID", "")
APP_URL = os.environ.get("APP_URL", "")
TELEGRAM_API_BASE = "https://api.telegram.org"


class Notifier(Protocol):
    def notify(self, execution_id: str) -> None: ...


class NullNotifier:
    """Notifier that does nothing (no channel configured)."""

    def notify(self, execution_id: str) -> None:
        logger.debug(f"[exec {execution_id}] No notifier configured")


def _esc(text: str) -> str:
    return html.escape(text, quote=False)


def _duration_seconds(execution: Execution) -> Optional[int]:
    if not execution.started_at or not execution.finished_at:
        return None
    try:
        started = datetime.fromisoformat(execution.started_at)
        finished = datetime.fromisoformat(execution.finished_at)
    except ValueError:
        return None
    return round((finished - started).total_seconds())


def extract_article_info(step_results: list[StepResult]) -> Optional[dict]:
    """Title and subtitle of the last finished step whose output is an article JSON."""
    for result in reversed(step_results):
        if result.status != StepResultStatus.DONE or not result.output_full:
            continue
        text = result.output_full.get("text")
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except ValueError:
            continue
        if isinstance(parsed, dict) and (parsed.get("title") or parsed.get("body")):
            return {
                "title": (parsed.get("title") or "")[:100],
                "subtitle": (parsed.get("subtitle") or parsed.get("summary") or "")[:150],
            }
    return None


def build_completion_text(
    execution: Execution,
    step_results: list[StepResult],
    app_url: str = APP_URL,
) -> str:
    """HTML message announcing a finished (or failed) execution."""
    recipe_name = _esc(execution.recipe_name or "Recipe")

    if execution.status == ExecutionStatus.ERROR:
        message = (execution.error_message or "Unknown error")[:200]
        return f"❌ <b>{recipe_name}</b> — error\n\n{_esc(message)}"

    lines = [f"✅ <b>{recipe_name}</b> — done"]

    stats = []
    duration = _duration_seconds(execution)
    if duration:
        stats.append(f"⏱ {duration}s")
    if execution.total_cost_cents > 0:
        stats.append(f"💰 ${execution.total_cost_cents / 100:.3f}")
    if execution.confidence_score is not None:
        score = execution.confidence_score
        icon = "🟢" if score > 80 else "🟡" if score > 50 else "🔴"
        stats.append(f"{icon} {score}%")
    if stats:
        lines.append(" • ".join(stats))

    article = extract_article_info(step_results)
    if article:
        lines.append("")
        if article["title"]:
            lines.append(f"📰 <b>{_esc(article['title'])}</b>")
        if article["subtitle"]:
            lines.append(f"<i>{_esc(article['subtitle'])}</i>")

    if execution.warning_flag:
        if execution.warning_flag == "high_risk":
            lines.append("\n🔴 HIGH RISK")
        else:
            lines.append("\n⚠️ Needs review")

    if execution.preview_url:
        lines.append(f'\n🔗 <a href="{app_url}{execution.preview_url}">Open preview</a>')

    return "\n".join(lines)


class TelegramNotifier:
    """Sends completion messages through the Telegram Bot API."""

    def __init__(
        self,
        store,
        bot_token: str = TELEGRAM_BOT_TOKEN,
        default_chat_id: str = TELEGRAM_CHAT_ID,
        app_url: str = APP_URL,
        client: Optional[httpx.Client] = None,
    ):
        self.store = store
        self.bot_token = bot_token
        self.default_chat_id = default_chat_id
        self.app_url = app_url
        self._client = client or httpx.Client(timeout=httpx.Timeout(15.0))

    def _send(self, chat_id: str, text: str, parse_mode: Optional[str]) -> bool:
        body = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        if parse_mode:
            body["parse_mode"] = parse_mode
        response = self._client.post(
            f"{TELEGRAM_API_BASE}/bot{self.bot_token}/sendMessage", json=body
        )
        data = response.json() if response.content else {}
        if not data.get("ok"):
            logger.warning(f"Telegram sendMessage failed: {data.get('description', response.status_code)}")
            return False
        return True

    def notify(self, execution_id: str) -> None:
        try:
            execution = self.store.get_execution(execution_id)
            if execution is None:
                logger.info(f"[exec {execution_id}] Not found, skipping notification")
                return
            if execution.status not in (ExecutionStatus.DONE, ExecutionStatus.ERROR):
                logger.info(f"[exec {execution_id}] Status {execution.status.value} is not notifiable")
                return

            chat_id = execution.notify_chat_id or self.default_chat_id
            if not self.bot_token or not chat_id:
                logger.debug(f"[exec {execution_id}] Telegram not configured, skipping notification")
                return

            text = build_completion_text(
                execution, self.store.list_step_results(execution_id), self.app_url
            )
            if not self._send(chat_id, text, "HTML"):
                # Malformed HTML is the usual cause, plain text still gets through
                self._send(chat_id, text, None)
        except Exception as e:
            logger.warning(f"[exec {execution_id}] Completion notification failed (non-fatal): {e}")
