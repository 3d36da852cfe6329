"""
Zoho CRM / Bigin REST client (async, aiohttp).

The job scheduler uses three calls:
    create_contact       POST   {base}/Contacts
    send_mail            POST   {base}/Contacts/{id}/actions/send_mail
    fetch_email_history  GET    {base}/Contacts/{id}/Emails

Everything else here backs the CLI (from-addresses, email templates,
contact stats, bulk delete).

Zoho answers record-level problems inside a 2xx body
({"data": [{"status": "error", "code": "DUPLICATE_DATA", ...}]}), and
request-level problems with 4xx + a JSON body. Both shapes are reduced
to an outcome here; network errors are left to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

import config
from jobs.models import CreateOutcome, SendOutcome

logger = logging.getLogger("zohojobs.zoho_client")

DUPLICATE_CODE = "DUPLICATE_DATA"
CONTACTS_PAGE_SIZE = 200


class ZohoAPIError(Exception):
    """Non-2xx response from a Zoho API."""

    def __init__(self, status: int, payload: Any):
        self.status = status
        self.payload = payload
        message = payload.get("message") if isinstance(payload, dict) else None
        super().__init__(f"Zoho API error {status}: {message or payload}")


@dataclass(frozen=True)
class Platform:
    """
    A Zoho product the jobs can target.

    Bigin returns an email's status either as a list of {"type": ...}
    entries or as a bare string; CRM always uses the list form.
    """
    name: str
    base_url: str
    status_may_be_string: bool = False

    def status_types(self, email_entry: Dict[str, Any]) -> List[str]:
        """Lower-cased status types of one email_related_list entry."""
        status = email_entry.get("status")
        if not status:
            return []
        if isinstance(status, str):
            if not self.status_may_be_string:
                return []
            status = [{"type": status}]
        types = []
        for s in status:
            value = s.get("type") if isinstance(s, dict) else s
            if value:
                types.append(str(value).lower())
        return types


CRM = Platform("crm", config.ZOHO_CRM_API_URL)
BIGIN = Platform("bigin", config.ZOHO_BIGIN_API_URL, status_may_be_string=True)

PLATFORMS: Dict[str, Platform] = {p.name: p for p in (CRM, BIGIN)}


def get_platform(name) -> Platform:
    if isinstance(name, Platform):
        return name
    try:
        return PLATFORMS[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unknown platform '{name}' (expected one of: {', '.join(PLATFORMS)})")


@dataclass
class ContactResult:
    outcome: CreateOutcome
    entity_id: Optional[str]
    raw: Any


@dataclass
class MailResult:
    outcome: SendOutcome
    raw: Any


@dataclass
class EmailHistory:
    entries: List[Dict[str, Any]] = field(default_factory=list)
    raw: Any = None

    @property
    def latest(self) -> Optional[Dict[str, Any]]:
        return self.entries[0] if self.entries else None


def _first_record(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0]
    return {}


def interpret_create_response(payload: Any):
    """Return (CreateOutcome, contact_id) for a Contacts insert response."""
    record = _first_record(payload)
    details = record.get("details") or {}
    if record.get("status") == "success" and details.get("id"):
        return CreateOutcome.SUCCESS, str(details["id"])
    if record.get("code") == DUPLICATE_CODE:
        existing_id = details.get("id") or (details.get("duplicate_record") or {}).get("id")
        if existing_id:
            return CreateOutcome.DUPLICATE, str(existing_id)
    return CreateOutcome.FAILED, None


def interpret_send_response(payload: Any) -> SendOutcome:
    if _first_record(payload).get("status") == "success":
        return SendOutcome.SUCCESS
    return SendOutcome.FAILED


async def _read_payload(resp: aiohttp.ClientResponse) -> Any:
    if resp.status == 204:
        return {}
    try:
        payload = await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        text = await resp.text()
        return {"message": text}
    return payload if payload is not None else {}


class ZohoClient:
    """Thin async wrapper over the Zoho REST endpoints the jobs need."""

    def __init__(self, timeout: float = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.HTTP_TIMEOUT_SECONDS)

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Zoho-oauthtoken {token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        params: Dict[str, Any] = None,
        json: Any = None,
    ) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.request(
                method, url, headers=self._headers(token), params=params, json=json
            ) as resp:
                payload = await _read_payload(resp)
                if resp.status >= 400:
                    raise ZohoAPIError(resp.status, payload)
                return payload

    # ── Job stages ───────────────────────────────────────────────────

    async def create_contact(self, platform: Platform, token: str, fields: Dict[str, Any]) -> ContactResult:
        """
        Insert one contact. DUPLICATE_DATA is reported as CreateOutcome.DUPLICATE
        with the existing record's id, whether Zoho sent it as 2xx or 4xx.
        """
        try:
            payload = await self._request(
                "POST", f"{platform.base_url}/Contacts", token, json={"data": [fields]}
            )
        except ZohoAPIError as e:
            payload = e.payload
        outcome, contact_id = interpret_create_response(payload)
        logger.debug(
            "contact_create_response",
            extra={"platform": platform.name, "outcome": outcome.value, "contact_id": contact_id},
        )
        return ContactResult(outcome=outcome, entity_id=contact_id, raw=payload)

    async def send_mail(
        self,
        platform: Platform,
        token: str,
        contact_id: str,
        from_address: Dict[str, Any],
        to_address: str,
        to_name: str,
        subject: str,
        content: str,
    ) -> MailResult:
        body = {
            "data": [{
                "from": {"user_name": from_address.get("user_name"), "email": from_address.get("email")},
                "to": [{"user_name": to_name, "email": to_address}],
                "subject": subject,
                "content": content,
                "mail_format": "html",
            }]
        }
        try:
            payload = await self._request(
                "POST",
                f"{platform.base_url}/Contacts/{contact_id}/actions/send_mail",
                token,
                json=body,
            )
        except ZohoAPIError as e:
            return MailResult(outcome=SendOutcome.FAILED, raw=e.payload)
        return MailResult(outcome=interpret_send_response(payload), raw=payload)

    async def fetch_email_history(self, platform: Platform, token: str, contact_id: str) -> EmailHistory:
        """Emails sent to a contact, newest first. Empty when Zoho has none."""
        payload = await self._request(
            "GET", f"{platform.base_url}/Contacts/{contact_id}/Emails", token
        )
        entries = payload.get("email_related_list") if isinstance(payload, dict) else None
        return EmailHistory(entries=list(entries or []), raw=payload)

    # ── Reports / maintenance ────────────────────────────────────────

    async def fetch_from_addresses(self, token: str, platform: Platform = CRM) -> List[Dict[str, Any]]:
        payload = await self._request(
            "GET", f"{platform.base_url}/settings/emails/actions/from_addresses", token
        )
        return list(payload.get("from_addresses") or [])

    async def fetch_email_templates(self, token: str, module: str = "Contacts") -> List[Dict[str, Any]]:
        """CRM email templates for one module (CRM only; Bigin has no template API)."""
        payload = await self._request(
            "GET",
            f"{config.ZOHO_CRM_SETTINGS_API_URL}/settings/email_templates",
            token,
            params={"module": module},
        )
        return list(payload.get("email_templates") or [])

    async def fetch_email_template(self, token: str, template_id: str) -> Optional[Dict[str, Any]]:
        """One template including its HTML content, or None if Zoho returns nothing."""
        payload = await self._request(
            "GET", f"{config.ZOHO_CRM_SETTINGS_API_URL}/settings/email_templates/{template_id}", token
        )
        templates = payload.get("email_templates") or []
        return templates[0] if templates else None

    async def fetch_all_contacts(self, platform: Platform, token: str) -> List[Dict[str, Any]]:
        """
        Page through every contact (200 per page), de-duplicated by id.
        A failing page ends the walk; whatever was collected is returned.
        """
        contacts: Dict[str, Dict[str, Any]] = {}
        page = 1
        while True:
            try:
                payload = await self._request(
                    "GET",
                    f"{platform.base_url}/Contacts",
                    token,
                    params={"page": page, "per_page": CONTACTS_PAGE_SIZE},
                )
            except (ZohoAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"contacts_page_failed: page={page} error={e}")
                break

            for contact in payload.get("data") or []:
                contacts[contact.get("id")] = contact

            if not (payload.get("info") or {}).get("more_records"):
                break
            page += 1

        return list(contacts.values())

    async def fetch_contact_stats(
        self, platform: Platform, token: str, contacts: Iterable[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Email history for each contact, fetched concurrently."""

        async def one(contact: Dict[str, Any]) -> Dict[str, Any]:
            try:
                history = await self.fetch_email_history(platform, token, contact["id"])
                emails = history.entries
            except (ZohoAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"contact_stats_failed: contact={contact.get('id')} error={e}")
                emails = []
            return {
                "contact_id": contact.get("id"),
                "Full_Name": contact.get("Full_Name"),
                "Email": contact.get("Email"),
                "Owner": contact.get("Owner"),
                "emails": emails,
            }

        return list(await asyncio.gather(*(one(c) for c in contacts)))

    async def delete_contacts(self, platform: Platform, token: str, contact_ids: List[str]) -> Any:
        if not contact_ids:
            raise ValueError("No contact IDs provided for deletion.")
        return await self._request(
            "DELETE",
            f"{platform.base_url}/Contacts",
            token,
            params={"ids": ",".join(str(i) for i in contact_ids)},
        )


def summarize_email_stats(stats: List[Dict[str, Any]], platform: Platform, owner_id: str = None) -> Dict[str, int]:
    """
    Per-contact delivery summary, as shown on the email stats report.

    A contact counts as sent when it has any email; delivered when sent
    and never bounced; clicked wins over opened.
    """
    rows = [s for s in stats if not owner_id or (s.get("Owner") or {}).get("id") == owner_id]

    address_counts: Dict[str, int] = {}
    for row in rows:
        address = (row.get("Email") or "").strip().lower()
        if address:
            address_counts[address] = address_counts.get(address, 0) + 1

    totals = {k: 0 for k in ("sent", "delivered", "opened", "clicked", "bounced", "unsent", "duplicated")}
    for row in rows:
        has_sent = bool(row.get("emails"))
        has_opened = has_clicked = has_bounced = False
        for email in row.get("emails") or []:
            types = platform.status_types(email)
            if "bounced" in types:
                has_bounced = True
            if "clicked" in types:
                has_clicked = True
            elif "opened" in types:
                has_opened = True

        address = (row.get("Email") or "").strip().lower()
        if has_sent:
            totals["sent"] += 1
            if not has_bounced:
                totals["delivered"] += 1
        else:
            totals["unsent"] += 1
        totals["opened"] += int(has_opened)
        totals["clicked"] += int(has_clicked)
        totals["bounced"] += int(has_bounced)
        if address and address_counts.get(address, 0) > 1:
            totals["duplicated"] += 1

    return totals
