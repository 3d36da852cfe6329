"""
Per-item pipeline: token → create contact → send mail.

Every stage failure is converted to an outcome on the ResultRecord; no
exception leaves ContactEmailPipeline.process(). Nothing is retried.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jobs.models import CreateOutcome, LiveStatus, ResultRecord, SendOutcome
from zoho_client import ContactResult, Platform

logger = logging.getLogger("zohojobs.pipeline")

SKIPPED_MESSAGE = "Email sending was skipped by user."
NO_CONTACT_MESSAGE = "Email not sent because contact creation failed."
NO_FROM_ADDRESS_MESSAGE = "From address not found"


def find_from_address(form_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    The from_addresses entry whose email matches form_data["from_email"].
    Bare address strings are accepted as {"email": address}; anything else is ignored.
    """
    wanted = form_data.get("from_email")
    if not wanted:
        return None
    for address in form_data.get("from_addresses") or []:
        if isinstance(address, str):
            address = {"email": address}
        elif not isinstance(address, dict):
            continue
        if address.get("email") == wanted:
            return address
    return None


def build_contact_fields(item: str, form_data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "Last_Name": form_data.get("last_name"),
        "Email": item,
        **(form_data.get("custom_fields") or {}),
    }


class ContactEmailPipeline:
    """Runs the create and send stages for one address."""

    def __init__(self, client, tokens):
        self.client = client
        self.tokens = tokens

    async def process(self, account, platform: Platform, item: str, form_data: Dict[str, Any]) -> ResultRecord:
        try:
            token = await self.tokens.get_valid_token(account)
        except Exception as e:
            logger.error(f"token_unavailable: account={account.id} item={item} error={e}")
            error = {"message": str(e)}
            return ResultRecord(
                item=item,
                create_outcome=CreateOutcome.FAILED,
                send_outcome=SendOutcome.FAILED,
                responses={"contact": error, "email": error, "live": None},
            )

        contact = await self._create_stage(platform, token, item, form_data)
        send_outcome, email_payload = await self._send_stage(
            platform, token, item, contact.entity_id, form_data
        )

        if form_data.get("check_status") and contact.entity_id:
            live_status = LiveStatus.PENDING
        else:
            live_status = LiveStatus.NOT_REQUESTED

        return ResultRecord(
            item=item,
            create_outcome=contact.outcome,
            send_outcome=send_outcome,
            live_status=live_status,
            entity_id=contact.entity_id,
            responses={"contact": contact.raw, "email": email_payload, "live": None},
        )

    async def _create_stage(self, platform: Platform, token: str, item: str, form_data: Dict[str, Any]) -> ContactResult:
        try:
            return await self.client.create_contact(platform, token, build_contact_fields(item, form_data))
        except Exception as e:
            logger.warning(f"create_stage_error: item={item} error={e}")
            return ContactResult(outcome=CreateOutcome.FAILED, entity_id=None, raw={"message": str(e)})

    async def _send_stage(
        self,
        platform: Platform,
        token: str,
        item: str,
        contact_id: Optional[str],
        form_data: Dict[str, Any],
    ) -> Tuple[SendOutcome, Any]:
        if not form_data.get("send_email"):
            return SendOutcome.SKIPPED, {"message": SKIPPED_MESSAGE}
        if not contact_id:
            return SendOutcome.FAILED, {"message": NO_CONTACT_MESSAGE}

        from_address = find_from_address(form_data)
        if not from_address:
            return SendOutcome.FAILED, {"message": NO_FROM_ADDRESS_MESSAGE}

        try:
            mail = await self.client.send_mail(
                platform,
                token,
                contact_id,
                from_address,
                to_address=item,
                to_name=form_data.get("last_name"),
                subject=form_data.get("subject"),
                content=form_data.get("content"),
            )
        except Exception as e:
            logger.warning(f"send_stage_error: item={item} error={e}")
            return SendOutcome.FAILED, {"message": str(e)}
        return mail.outcome, mail.raw
