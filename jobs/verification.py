"""
Delayed delivery verification for one dispatched item.

Runs detached from the job's pacing loop: it sleeps, resolves its own
token, reads the contact's email history and writes live_status (and
responses["live"]) on the ResultRecord object it was handed. It never
looks the job up again, so a stopped or replaced job is harmless.
"""

import asyncio
import logging

from jobs.models import LiveStatus, ResultRecord
from utils.elk_logging import log_item_event
from zoho_client import EmailHistory, Platform

logger = logging.getLogger("zohojobs.verification")


def classify_history(history: EmailHistory, platform: Platform) -> str:
    """Map the newest email's first status to a live status value."""
    latest = history.latest
    if latest is None:
        return LiveStatus.NOT_FOUND

    types = platform.status_types(latest)
    if not types:
        return LiveStatus.NO_STATUS

    status_type = types[0]
    if status_type == "sent":
        return LiveStatus.SENT
    if status_type == "bounced":
        return LiveStatus.BOUNCED
    return status_type[:1].upper() + status_type[1:]


class DeliveryVerifier:
    """Holds the collaborators a verification needs; one per scheduler."""

    def __init__(self, accounts, tokens, client):
        self.accounts = accounts
        self.tokens = tokens
        self.client = client

    async def verify(
        self,
        result: ResultRecord,
        account_id: str,
        platform: Platform,
        wait_seconds: float,
        job_key: str = None,
    ) -> None:
        await asyncio.sleep(wait_seconds)
        try:
            account = await asyncio.to_thread(self.accounts.get_by_id, account_id)
            if account is None:
                raise LookupError(f"Account {account_id} not found.")
            token = await self.tokens.get_valid_token(account)
            history = await self.client.fetch_email_history(platform, token, result.entity_id)
            result.responses["live"] = history.raw
            result.live_status = classify_history(history, platform)
        except Exception as e:
            logger.warning(f"verification_failed: item={result.item} contact={result.entity_id} error={e}")
            result.live_status = LiveStatus.CHECK_FAILED
            result.responses["live"] = {"error": str(e)}

        log_item_event(
            "live_status_checked",
            job_key,
            result.item,
            extra={"live_status": result.live_status, "contact_id": result.entity_id},
        )
