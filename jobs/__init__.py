"""
Bulk contact/email jobs against Zoho CRM and Bigin.

Modules:
    models.py        JobRecord / ResultRecord and the status enums
    pipeline.py      Per-item token → create contact → send mail
    verification.py  Delayed delivery check against the contact's email history
    scheduler.py     Paced job loop with pause / resume / stop per (platform, account)
    alerts.py        Webhook notification when a job completes or fails
"""
