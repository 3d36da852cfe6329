"""
Alerting Module: sends job notifications via webhook (Slack, Discord, Telegram).

Sent when a job finishes:
- Completed (info, or warning when some items failed)
- Failed (critical)

Configuration via env vars:
    ALERT_WEBHOOK_URL=https://hooks.slack.com/services/...
    ALERT_CHANNEL=slack  (or 'discord', 'telegram')
    JOB_ALERTS_ENABLED=true
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import aiohttp

import config

logger = logging.getLogger("zohojobs.alerts")


class AlertLevel:
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


async def send_alert(
    message: str,
    level: str = AlertLevel.INFO,
    title: str = None,
) -> bool:
    """
    Send an alert via the configured webhook.

    Args:
        message: Alert body text
        level: AlertLevel.CRITICAL / WARNING / INFO
        title: Optional title/heading

    Returns:
        True if sent successfully, False otherwise
    """
    if not config.ALERT_WEBHOOK_URL:
        logger.debug(f"Alert skipped (no webhook): [{level}] {message[:80]}")
        return False

    channel = config.ALERT_CHANNEL
    emoji = {"critical": "🚨", "warning": "⚠️", "info": "ℹ️"}.get(level, "📢")
    heading = title or f"{emoji} Zoho Bulk Jobs: {level.upper()}"

    if channel == "discord":
        payload = _build_discord_payload(heading, message, level)
    elif channel == "telegram":
        payload = _build_telegram_payload(heading, message)
    else:
        payload = _build_slack_payload(heading, message, level)

    url = config.ALERT_WEBHOOK_URL
    if channel == "telegram":
        url = f"https://api.telegram.org/bot{config.ALERT_WEBHOOK_URL}/sendMessage"

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                if resp.status in (200, 204):
                    logger.info(f"Alert sent: [{level}] {(title or message)[:60]}")
                    return True
                body = await resp.text()
                logger.error(f"Alert webhook returned {resp.status}: {body[:200]}")
                return False
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def _build_slack_payload(title: str, message: str, level: str) -> dict:
    color = {
        "critical": "#FF0000",
        "warning": "#FFA500",
        "info": "#36A64F",
    }.get(level, "#808080")

    return {
        "attachments": [
            {
                "color": color,
                "title": title,
                "text": message,
                "footer": "Zoho Bulk Jobs",
                "ts": int(datetime.now(timezone.utc).timestamp()),
            }
        ]
    }


def _build_discord_payload(title: str, message: str, level: str) -> dict:
    color = {
        "critical": 0xFF0000,
        "warning": 0xFFA500,
        "info": 0x36A64F,
    }.get(level, 0x808080)

    return {
        "embeds": [
            {
                "title": title,
                "description": message,
                "color": color,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ]
    }


def _build_telegram_payload(title: str, message: str) -> dict:
    return {
        "chat_id": config.TELEGRAM_CHAT_ID,
        "text": f"*{title}*\n\n{message}",
        "parse_mode": "Markdown",
    }


# ── Job summary ──────────────────────────────────────────────────────


def summarize_results(snapshot: Dict[str, Any]) -> Dict[str, int]:
    """Count stage outcomes across a job snapshot's results."""
    counts = {"created": 0, "duplicates": 0, "create_failed": 0, "sent": 0, "send_failed": 0, "skipped": 0}
    for result in snapshot.get("results", []):
        create = result.get("create_outcome")
        if create == "Success":
            counts["created"] += 1
        elif create == "Duplicate":
            counts["duplicates"] += 1
        else:
            counts["create_failed"] += 1

        send = result.get("send_outcome")
        if send == "Success":
            counts["sent"] += 1
        elif send == "Skipped":
            counts["skipped"] += 1
        else:
            counts["send_failed"] += 1
    return counts


async def alert_job_finished(job_key: str, snapshot: Dict[str, Any]) -> bool:
    """Scheduler hook: report a Completed or Failed job."""
    if not config.JOB_ALERTS_ENABLED:
        logger.debug("job_alerts_disabled")
        return False

    status = snapshot.get("status")
    counts = summarize_results(snapshot)
    lines = [
        f"Job `{job_key}` {status.lower()} at {snapshot.get('cursor')}/{snapshot.get('total')} items.",
        "",
        f"• Contacts created: {counts['created']} (duplicates: {counts['duplicates']})",
        f"• Contact failures: {counts['create_failed']}",
        f"• Emails sent: {counts['sent']}",
        f"• Email failures: {counts['send_failed']}",
        f"• Emails skipped: {counts['skipped']}",
    ]
    if snapshot.get("last_error"):
        lines.append(f"\nError: {snapshot['last_error']}")

    if status == "Failed":
        return await send_alert("\n".join(lines), AlertLevel.CRITICAL, f"🚨 Job Failed: {job_key}")

    level = AlertLevel.WARNING if counts["create_failed"] or counts["send_failed"] else AlertLevel.INFO
    return await send_alert("\n".join(lines), level, f"✅ Job Completed: {job_key}")
