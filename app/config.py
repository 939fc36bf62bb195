import os

API_KEY = os.getenv("AUTOPILOT_API_KEY", "autopilot-secret-key")

DATABASE_PATH = os.getenv("AUTOPILOT_DB_PATH", "autopilot.db")
DATABASE_URL = f"sqlite:///{DATABASE_PATH}"

HOST = os.getenv("AUTOPILOT_HOST", "127.0.0.1")
PORT = int(os.getenv("AUTOPILOT_PORT", "8000"))

# Base URL the broker uses to reach the webhook and OAuth callback routes
PUBLIC_URL = os.getenv("AUTOPILOT_PUBLIC_URL", f"http://{HOST}:{PORT}").rstrip("/")

LOG_LEVEL = os.getenv("AUTOPILOT_LOG_LEVEL", "INFO")

SCHEDULER_INTERVAL = float(os.getenv("AUTOPILOT_SCHEDULER_INTERVAL", "60.0"))
SCHEDULER_AUTOSTART = os.getenv("AUTOPILOT_SCHEDULER_AUTOSTART", "1") == "1"

COMPOSIO_BASE_URL = os.getenv("COMPOSIO_BASE_URL", "https://backend.composio.dev/api/v3")
COMPOSIO_API_KEY = os.getenv("COMPOSIO_API_KEY", "")

LLM_BASE_URL = os.getenv("AUTOPILOT_LLM_BASE_URL", "https://api.deepseek.com/v1")
LLM_MODEL = os.getenv("AUTOPILOT_LLM_MODEL", "deepseek-chat")
LLM_API_KEY = os.getenv("DEEPSEEK_API_KEY", "")

HTTP_TIMEOUT = float(os.getenv("AUTOPILOT_HTTP_TIMEOUT", "120.0"))

SCHEDULED_MAX_STEPS = int(os.getenv("AUTOPILOT_SCHEDULED_MAX_STEPS", "5"))
TOOL_LIMIT = int(os.getenv("AUTOPILOT_TOOL_LIMIT", "100"))
EXECUTION_MAX_ATTEMPTS = int(os.getenv("AUTOPILOT_EXECUTION_MAX_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("AUTOPILOT_RETRY_BACKOFF_SECONDS", "1.0"))
# Interactive chat turns get a larger budget than unattended runs
CHAT_MAX_STEPS = int(os.getenv("AUTOPILOT_CHAT_MAX_STEPS", "10"))
