# streetlights/config.py
import os

from dotenv import load_dotenv

# .env in local dev only (not on Render/prod)
if os.getenv("RENDER") is None and os.getenv("ENV", "dev") == "dev":
    load_dotenv()

ENV = os.getenv("ENV", "dev")

# Store
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
MAX_REPORTS = int(os.getenv("MAX_REPORTS", "5000"))

# Admin (x-admin-token)
ADMIN_TOKEN = (os.getenv("ADMIN_TOKEN") or os.getenv("NEXT_PUBLIC_ADMIN_TOKEN") or "").strip()

# Signed-in sessions arrive in the request body. An auth proxy in front may
# forward the verified user id as x-user-id; REQUIRE_USER_HEADER=1 makes it mandatory.
REQUIRE_USER_HEADER = os.getenv("REQUIRE_USER_HEADER", "0") == "1"

# CORS, ex: ALLOWED_ORIGINS="https://foo.netlify.app,https://bar.com"
ALLOWED_ORIGINS = [o.strip() for o in (os.getenv("ALLOWED_ORIGINS") or "").split(",") if o.strip()]

# Periodic bulk reload of the full row sets
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") != "0"
RELOAD_INTERVAL_SEC = int(os.getenv("RELOAD_INTERVAL_SEC", "60"))

# Community clustering radius (meters)
GROUP_RADIUS_METERS = float(os.getenv("GROUP_RADIUS_METERS", "25"))

# Anonymous per-light cooldown (client-side guardrail)
REPORT_COOLDOWN_HOURS = int(os.getenv("REPORT_COOLDOWN_HOURS", "24"))
ANON_COOLDOWNS_PATH = os.getenv("ANON_COOLDOWNS_PATH", "").strip() or None

LOG_ENGINE = os.getenv("LOG_ENGINE", "0") == "1"
