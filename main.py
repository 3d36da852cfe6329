#!/usr/bin/env python3
"""
Zoho Bulk Jobs
==============

Create Zoho CRM / Bigin contacts from a list of addresses and optionally
email each one, paced one item every few seconds.

Usage:
    python main.py accounts
    python main.py account-add "Acme" --client-id ... --client-secret ... --refresh-token ...
    python main.py account-validate <account_id>
    python main.py account-remove <account_id>
    python main.py from-addresses <account_id>
    python main.py run <account_id> emails.txt --delay 5 --subject "Hi" --content-file body.html
    python main.py send-one <account_id> jane@acme.com --template-id <template_id>
    python main.py email-templates <account_id> [--show <template_id>]
    python main.py contact-stats <account_id> --platform bigin
    python main.py delete-contacts <account_id> <contact_id> [<contact_id> ...]

While `run` is going: Ctrl+C stops the job, SIGUSR1 toggles pause/resume.
"""

import argparse
import asyncio
import json
import logging
import re
import signal
import sys
from typing import Any, Dict, List, Tuple

import config
from database import Accounts, ensure_indexes
from jobs.alerts import alert_job_finished
from jobs.models import JobStatus, LiveStatus, SendOutcome, job_key
from jobs.pipeline import ContactEmailPipeline
from jobs.scheduler import JobScheduler
from jobs.verification import DeliveryVerifier
from utils.elk_logging import setup_elk_logging
from utils.logging_utils import setup_logging
from zoho_auth import AuthError, ZohoTokenProvider
from zoho_client import PLATFORMS, ZohoAPIError, ZohoClient, get_platform, summarize_email_stats

logger = logging.getLogger("zohojobs.main")

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


def configure_logging():
    if config.LOG_FORMAT == "json":
        setup_elk_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE)
    else:
        setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE)


def is_valid_email(email: str) -> bool:
    """Check if email is a valid format (has @ and domain)"""
    if not email:
        return False
    return bool(re.match(EMAIL_PATTERN, email))


def parse_emails(text: str) -> Tuple[List[str], List[str]]:
    """Split on commas / whitespace. Returns (valid, invalid), input order kept."""
    valid, invalid = [], []
    for token in re.split(r'[\s,;]+', text):
        token = token.strip()
        if not token:
            continue
        (valid if is_valid_email(token) else invalid).append(token)
    return valid, invalid


def parse_custom_fields(pairs: List[str]) -> Dict[str, str]:
    """--field Lead_Source=Import --field Title=CTO → {"Lead_Source": "Import", ...}"""
    fields = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid --field '{pair}' (expected Name=value)")
        fields[name.strip()] = value
    return fields


def build_form_data(args, from_addresses: List[Dict[str, Any]], content: str = None, subject: str = None) -> Dict[str, Any]:
    from_email = args.from_email
    if not from_email and from_addresses:
        from_email = from_addresses[0].get("email")

    return {
        "send_email": not args.no_send,
        "check_status": args.check_status,
        "check_delay": args.check_delay,
        "from_addresses": from_addresses,
        "from_email": from_email,
        "last_name": args.last_name,
        "custom_fields": parse_custom_fields(args.field),
        "subject": subject if subject is not None else args.subject,
        "content": content,
    }


def format_progress(snapshot: Dict[str, Any]) -> str:
    status_emoji = {
        "Processing": "🟢", "Paused": "⏸️", "Stopped": "⏹️", "Completed": "✅", "Failed": "❌",
    }.get(snapshot["status"], "❓")
    line = f"{status_emoji} {snapshot['status']}: {snapshot['cursor']}/{snapshot['total']}"
    if snapshot["status"] == "Processing" and snapshot["countdown"]:
        line += f" | next in {snapshot['countdown']:.0f}s"
    return line


def print_results(snapshot: Dict[str, Any]):
    print(f"\n📊 Results ({len(snapshot['results'])}/{snapshot['total']})\n")
    for r in snapshot["results"]:
        print(f"   {r['item']}")
        print(f"      Contact: {r['create_outcome']} | Email: {r['send_outcome']} | Live: {r['live_status']}")
    if snapshot.get("last_error"):
        print(f"\n❌ {snapshot['last_error']}")


def _load_account(account_id: str, platform_name: str = None):
    """Account lookup shared by the commands. Returns None after printing why."""
    account = Accounts.get_by_id(account_id)
    if not account:
        print(f"❌ Account {account_id} not found.")
        return None
    if platform_name and not account.supports(platform_name):
        print(f"❌ Account {account.name} ({account.id}) is not enabled for {platform_name}.")
        return None
    return account


# ── Account commands ─────────────────────────────────────────────────


def list_accounts() -> int:
    accounts = Accounts.get_all()
    if not accounts:
        print("\n📭 No accounts yet. Add one with:")
        print('   python main.py account-add "Acme" --client-id ... --client-secret ... --refresh-token ...')
        return 0

    print(f"\n📋 Accounts ({len(accounts)})\n")
    for a in accounts:
        platforms = [name for name in PLATFORMS if a.supports(name)]
        print(f"🏢 {a.name}")
        print(f"   ID: {a.id} | Platforms: {', '.join(platforms) or 'none'}")
        print()
    return 0


async def add_account(args) -> int:
    if not args.skip_validation:
        ok, error = await ZohoTokenProvider().validate_credentials(
            args.client_id, args.client_secret, args.refresh_token
        )
        if not ok:
            print(f"❌ Credentials rejected: {error}")
            return 1

    account = Accounts.create({
        "name": args.name,
        "client_id": args.client_id,
        "client_secret": args.client_secret,
        "refresh_token": args.refresh_token,
        "supports_crm": not args.no_crm,
        "supports_bigin": args.bigin,
    })
    print(f"✅ Account added: {account.name} (ID: {account.id})")
    return 0


def remove_account(account_id: str) -> int:
    if not Accounts.delete(account_id):
        print(f"❌ Account {account_id} not found.")
        return 1
    print(f"🗑️  Account {account_id} removed")
    return 0


async def validate_account(account_id: str) -> int:
    account = _load_account(account_id)
    if not account:
        return 1
    ok, error = await ZohoTokenProvider().validate_credentials(
        account.client_id, account.client_secret, account.refresh_token
    )
    if ok:
        print(f"✅ {account.name}: connected")
        return 0
    print(f"❌ {account.name}: {error}")
    return 1


async def list_from_addresses(account_id: str, platform_name: str) -> int:
    account = _load_account(account_id, platform_name)
    if not account:
        return 1
    try:
        token = await ZohoTokenProvider().get_valid_token(account)
        addresses = await ZohoClient().fetch_from_addresses(token, get_platform(platform_name))
    except (AuthError, ZohoAPIError) as e:
        print(f"❌ {e}")
        return 1

    print(f"\n📧 From addresses for {account.name} ({len(addresses)})\n")
    for a in addresses:
        print(f"   {a.get('email')}  ({a.get('user_name') or '-'})")
    return 0


async def list_email_templates(account_id: str, module: str, template_id: str = None) -> int:
    account = _load_account(account_id, "crm")
    if not account:
        return 1

    client = ZohoClient()
    try:
        token = await ZohoTokenProvider().get_valid_token(account)
        if template_id:
            template = await client.fetch_email_template(token, template_id)
        else:
            templates = await client.fetch_email_templates(token, module)
    except (AuthError, ZohoAPIError) as e:
        print(f"❌ {e}")
        return 1

    if template_id:
        if not template:
            print(f"❌ Email template {template_id} not found.")
            return 1
        print(f"\n📝 {template.get('name')} ({template.get('id')})")
        print(f"   Subject: {template.get('subject') or '-'}\n")
        print(template.get("content") or "")
        return 0

    print(f"\n📝 Email templates for {account.name} / {module} ({len(templates)})\n")
    for t in templates:
        stats = t.get("last_version_statistics") or {}
        print(f"   {t.get('id')}  {t.get('name')}")
        print(f"      Subject: {t.get('subject') or '-'}")
        print(f"      Sent: {stats.get('sent', 0)} | Delivered: {stats.get('delivered', 0)} | "
              f"Opened: {stats.get('opened', 0)} | Clicked: {stats.get('clicked', 0)} | "
              f"Bounced: {stats.get('bounced', 0)}")
    return 0


# ── Job commands ─────────────────────────────────────────────────────


async def load_message(args, account, tokens, client) -> Tuple[str, str]:
    """
    (content, subject) for outgoing mail.

    --template-id pulls both from a CRM email template; an explicit
    --subject still wins. Otherwise the body comes from --content-file.
    """
    if args.template_id:
        if not account.supports("crm"):
            raise ValueError("Email templates need a CRM-enabled account.")
        token = await tokens.get_valid_token(account)
        template = await client.fetch_email_template(token, args.template_id)
        if not template:
            raise ValueError(f"Email template {args.template_id} not found.")
        return template.get("content"), args.subject or template.get("subject") or ""

    content = None
    if args.content_file:
        with open(args.content_file) as f:
            content = f.read()
    return content, args.subject


async def prepare_form_data(args, account, platform, tokens, client) -> Dict[str, Any]:
    """
    Sender addresses, message and contact fields for `run` / `send-one`.
    Raises AuthError / ZohoAPIError / ValueError.
    """
    from_addresses: List[Dict[str, Any]] = []
    content, subject = None, args.subject
    if not args.no_send:
        token = await tokens.get_valid_token(account)
        from_addresses = await client.fetch_from_addresses(token, platform)
        content, subject = await load_message(args, account, tokens, client)
    return build_form_data(args, from_addresses, content, subject)


async def run_job(args) -> int:
    platform = get_platform(args.platform)
    account = _load_account(args.account_id, platform.name)
    if not account:
        return 1

    with open(args.emails_file) as f:
        emails, invalid = parse_emails(f.read())
    for address in invalid:
        print(f"⚠️  Skipping invalid address: {address}")
    if not emails:
        print("❌ No valid email addresses to process.")
        return 1

    tokens = ZohoTokenProvider()
    client = ZohoClient()

    try:
        form_data = await prepare_form_data(args, account, platform, tokens, client)
    except (AuthError, ZohoAPIError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    hook = alert_job_finished if config.JOB_ALERTS_ENABLED else None
    async with JobScheduler(Accounts, tokens, client, on_job_finished=hook) as scheduler:
        loop = asyncio.get_running_loop()

        def toggle_pause():
            if not scheduler.pause(account.id, platform):
                scheduler.resume(account.id, platform)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop, account.id, platform)
        loop.add_signal_handler(signal.SIGUSR1, toggle_pause)

        try:
            print(f"\n🚀 {len(emails)} contacts → {platform.name} ({account.name}), one every {args.delay}s\n")
            scheduler.start(account.id, platform, emails, args.delay, form_data)

            while True:
                try:
                    snapshot = await asyncio.wait_for(
                        scheduler.wait_until_settled(account.id, platform), timeout=1.0
                    )
                    break
                except asyncio.TimeoutError:
                    print(format_progress(scheduler.get_job_status(account.id, platform)))

            if args.check_status:
                print("\n⏳ Waiting for delivery checks...")
            await scheduler.drain()
            snapshot = scheduler.get_job_status(account.id, platform)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGUSR1):
                loop.remove_signal_handler(sig)

    print(format_progress(snapshot))
    print_results(snapshot)
    return 0 if snapshot["status"] == JobStatus.COMPLETED.value else 1


async def send_one(args) -> int:
    """Create (or find) one contact and email it right away, outside any job."""
    platform = get_platform(args.platform)
    account = _load_account(args.account_id, platform.name)
    if not account:
        return 1
    if not is_valid_email(args.email):
        print(f"❌ Invalid email address: {args.email}")
        return 1

    tokens = ZohoTokenProvider()
    client = ZohoClient()
    try:
        form_data = await prepare_form_data(args, account, platform, tokens, client)
    except (AuthError, ZohoAPIError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    result = await ContactEmailPipeline(client, tokens).process(account, platform, args.email, form_data)
    if result.live_status == LiveStatus.PENDING:
        print(f"⏳ Checking delivery in {args.check_delay:.0f}s...")
        await DeliveryVerifier(Accounts, tokens, client).verify(
            result, account.id, platform, args.check_delay, job_key(platform.name, account.id)
        )

    snapshot = {"status": "Completed", "cursor": 1, "total": 1, "results": [result.to_dict()]}
    print_results(snapshot)
    if not result.create_succeeded:
        print(f"\n❌ Contact: {json.dumps(result.responses['contact'], default=str)}")
    if result.send_outcome is SendOutcome.FAILED:
        print(f"\n❌ Email: {json.dumps(result.responses['email'], default=str)}")
    return 0 if result.create_succeeded and result.send_outcome is not SendOutcome.FAILED else 1


# ── Reports / maintenance ────────────────────────────────────────────


async def show_contact_stats(account_id: str, platform_name: str, owner_id: str = None, as_json: bool = False) -> int:
    platform = get_platform(platform_name)
    account = _load_account(account_id, platform.name)
    if not account:
        return 1

    client = ZohoClient()
    try:
        token = await ZohoTokenProvider().get_valid_token(account)
    except AuthError as e:
        print(f"❌ {e}")
        return 1

    contacts = await client.fetch_all_contacts(platform, token)
    stats = await client.fetch_contact_stats(platform, token, contacts)
    summary = summarize_email_stats(stats, platform, owner_id)

    if as_json:
        print(json.dumps({"summary": summary, "contacts": stats}, indent=2, default=str))
        return 0

    print(f"\n📊 Email stats: {account.name} / {platform.name} ({len(stats)} contacts)")
    for key, value in summary.items():
        print(f"   - {key.title()}: {value}")
    return 0


async def delete_contacts(account_id: str, platform_name: str, contact_ids: List[str], yes: bool = False) -> int:
    platform = get_platform(platform_name)
    account = _load_account(account_id, platform.name)
    if not account:
        return 1

    if not yes:
        answer = input(f"Delete {len(contact_ids)} contact(s) from {platform.name}? [y/N] ")
        if answer.strip().lower() != "y":
            print("Aborted.")
            return 1

    try:
        token = await ZohoTokenProvider().get_valid_token(account)
        payload = await ZohoClient().delete_contacts(platform, token, contact_ids)
    except (AuthError, ZohoAPIError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    for record in payload.get("data") or []:
        status = "✅" if record.get("status") == "success" else "❌"
        print(f"   {status} {(record.get('details') or {}).get('id')} {record.get('message', '')}")
    return 0


def add_message_arguments(parser: argparse.ArgumentParser):
    """Contact fields and mail options shared by `run` and `send-one`."""
    parser.add_argument("--last-name", default="Contact", help="Last_Name for every created contact")
    parser.add_argument("--field", action="append", default=[], help="Extra contact field Name=value (repeatable)")
    parser.add_argument("--from-email", help="Sender address (default: first from-address)")
    parser.add_argument("--subject", default="")
    body = parser.add_mutually_exclusive_group()
    body.add_argument("--content-file", help="HTML body file")
    body.add_argument("--template-id", help="Use a CRM email template as the body (and subject, unless --subject)")
    parser.add_argument("--no-send", action="store_true", help="Only create contacts")
    parser.add_argument("--check-status", action="store_true", help="Check delivery status after sending")
    parser.add_argument("--check-delay", type=float, default=config.DEFAULT_CHECK_DELAY_SECONDS,
                        help="Seconds to wait before the delivery check")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Zoho CRM / Bigin bulk contact + email jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py account-add "Acme" --client-id X --client-secret Y --refresh-token Z --bigin
  python main.py run 1700000000000 leads.txt --delay 10 --subject "Hello" --content-file body.html
  python main.py run 1700000000000 leads.txt --platform bigin --no-send
  python main.py run 1700000000000 leads.txt --template-id 4150868000000123001
  python main.py send-one 1700000000000 jane@acme.com --subject "Hi" --content-file body.html
  python main.py contact-stats 1700000000000 --json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Accounts
    subparsers.add_parser("accounts", help="List registered Zoho accounts")

    add_parser = subparsers.add_parser("account-add", help="Register a Zoho OAuth client")
    add_parser.add_argument("name", help="Display name")
    add_parser.add_argument("--client-id", required=True)
    add_parser.add_argument("--client-secret", required=True)
    add_parser.add_argument("--refresh-token", required=True)
    add_parser.add_argument("--bigin", action="store_true", help="Enable Bigin jobs for this account")
    add_parser.add_argument("--no-crm", action="store_true", help="Disable CRM jobs for this account")
    add_parser.add_argument("--skip-validation", action="store_true", help="Don't test the refresh token first")

    remove_parser = subparsers.add_parser("account-remove", help="Remove an account")
    remove_parser.add_argument("account_id")

    validate_parser = subparsers.add_parser("account-validate", help="Test an account's refresh token")
    validate_parser.add_argument("account_id")

    from_parser = subparsers.add_parser("from-addresses", help="List the account's allowed sender addresses")
    from_parser.add_argument("account_id")
    from_parser.add_argument("--platform", choices=list(PLATFORMS), default="crm")

    # Run job
    run_parser = subparsers.add_parser("run", help="Create contacts (and email them) one at a time")
    run_parser.add_argument("account_id")
    run_parser.add_argument("emails_file", help="File of addresses (comma / whitespace / newline separated)")
    run_parser.add_argument("--platform", choices=list(PLATFORMS), default="crm")
    run_parser.add_argument("--delay", type=float, default=config.DEFAULT_DELAY_SECONDS, help="Seconds between items")
    add_message_arguments(run_parser)

    one_parser = subparsers.add_parser("send-one", help="Create one contact and email it immediately")
    one_parser.add_argument("account_id")
    one_parser.add_argument("email")
    one_parser.add_argument("--platform", choices=list(PLATFORMS), default="crm")
    add_message_arguments(one_parser)

    templates_parser = subparsers.add_parser("email-templates", help="List CRM email templates")
    templates_parser.add_argument("account_id")
    templates_parser.add_argument("--module", default="Contacts", help="CRM module the templates belong to")
    templates_parser.add_argument("--show", metavar="TEMPLATE_ID", help="Print one template's subject and content")

    # Reports
    stats_parser = subparsers.add_parser("contact-stats", help="Email delivery summary over all contacts")
    stats_parser.add_argument("account_id")
    stats_parser.add_argument("--platform", choices=list(PLATFORMS), default="crm")
    stats_parser.add_argument("--owner-id", help="Only contacts owned by this Zoho user")
    stats_parser.add_argument("--json", action="store_true", help="Print raw per-contact stats as JSON")

    delete_parser = subparsers.add_parser("delete-contacts", help="Delete contacts by id")
    delete_parser.add_argument("account_id")
    delete_parser.add_argument("contact_ids", nargs="+")
    delete_parser.add_argument("--platform", choices=list(PLATFORMS), default="crm")
    delete_parser.add_argument("--yes", action="store_true", help="Don't ask for confirmation")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging()
    ensure_indexes()

    if args.command == "accounts":
        return list_accounts()
    elif args.command == "account-add":
        return asyncio.run(add_account(args))
    elif args.command == "account-remove":
        return remove_account(args.account_id)
    elif args.command == "account-validate":
        return asyncio.run(validate_account(args.account_id))
    elif args.command == "from-addresses":
        return asyncio.run(list_from_addresses(args.account_id, args.platform))
    elif args.command == "run":
        return asyncio.run(run_job(args))
    elif args.command == "send-one":
        return asyncio.run(send_one(args))
    elif args.command == "email-templates":
        return asyncio.run(list_email_templates(args.account_id, args.module, args.show))
    elif args.command == "contact-stats":
        return asyncio.run(show_contact_stats(args.account_id, args.platform, args.owner_id, args.json))
    elif args.command == "delete-contacts":
        return asyncio.run(delete_contacts(args.account_id, args.platform, args.contact_ids, args.yes))
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
