import os
from dotenv import load_dotenv

load_dotenv()

# Database (account records)
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "zoho_bulk_jobs")

# Zoho endpoints
# Accounts server differs per data center (.com, .eu, .in, .com.au)
ZOHO_ACCOUNTS_URL = os.getenv("ZOHO_ACCOUNTS_URL", "https://accounts.zoho.com")
ZOHO_CRM_API_URL = os.getenv("ZOHO_CRM_API_URL", "https://www.zohoapis.com/crm/v2")
ZOHO_BIGIN_API_URL = os.getenv("ZOHO_BIGIN_API_URL", "https://www.zohoapis.com/bigin/v2")
# Email templates are only served by the newer CRM settings API
ZOHO_CRM_SETTINGS_API_URL = os.getenv("ZOHO_CRM_SETTINGS_API_URL", "https://www.zohoapis.com/crm/v8")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# OAuth token cache
# Cached tokens are treated as expired this many seconds early
TOKEN_EXPIRY_SKEW_SECONDS = int(os.getenv("TOKEN_EXPIRY_SKEW_SECONDS", "60"))
TOKEN_REFRESH_RETRIES = int(os.getenv("TOKEN_REFRESH_RETRIES", "2"))

# Job pacing
DEFAULT_DELAY_SECONDS = int(os.getenv("DEFAULT_DELAY_SECONDS", "5"))
DEFAULT_CHECK_DELAY_SECONDS = float(os.getenv("DEFAULT_CHECK_DELAY_SECONDS", "3"))
COUNTDOWN_TICK_SECONDS = float(os.getenv("COUNTDOWN_TICK_SECONDS", "1"))

# Timestamps shown in job status
TARGET_TIMEZONE = os.getenv("TARGET_TIMEZONE", "America/New_York")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()  # "text" or "json"
LOG_FILE = os.getenv("LOG_FILE") or None

# Alerts (job completed / failed)
ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL", "")
ALERT_CHANNEL = os.getenv("ALERT_CHANNEL", "slack").lower()  # "slack", "discord" or "telegram"
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")
JOB_ALERTS_ENABLED = os.getenv("JOB_ALERTS_ENABLED", "true").lower() == "true"
