from dotenv import load_dotenv
import os

load_dotenv()

# Remote store (PostgREST-style: per-table GET, per-function POST under /rpc)
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://localhost:54321").rstrip("/")
SUPABASE_API_KEY: str = os.getenv("SUPABASE_API_KEY", "")  # sent as apikey + Bearer token
REMOTE_REST_URL: str = f"{SUPABASE_URL}/rest/v1"

# Remote request policy
REMOTE_TIMEOUT_SECONDS: float = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "15"))
REMOTE_MAX_ATTEMPTS: int = int(os.getenv("REMOTE_MAX_ATTEMPTS", "3"))
REMOTE_BACKOFF_SECONDS: float = float(os.getenv("REMOTE_BACKOFF_SECONDS", "2"))
REMOTE_BACKOFF_CAP_SECONDS: float = float(os.getenv("REMOTE_BACKOFF_CAP_SECONDS", "10"))
# Ids per in.(...) filter; keeps the request line under the server's limit
REMOTE_BATCH_SIZE: int = int(os.getenv("REMOTE_BATCH_SIZE", "100"))
REMOTE_MAX_CONCURRENCY: int = int(os.getenv("REMOTE_MAX_CONCURRENCY", "4"))

# Nearby stops
STOP_CATALOG_LIMIT: int = int(os.getenv("STOP_CATALOG_LIMIT", "1000"))
NEARBY_RADIUS_METRES: int = int(os.getenv("NEARBY_RADIUS_METRES", "2000"))
NEARBY_MAX_RESULTS: int = int(os.getenv("NEARBY_MAX_RESULTS", "20"))

# Departure board
DEPARTURE_HORIZON_MINUTES: int = int(os.getenv("DEPARTURE_HORIZON_MINUTES", "120"))
DEPARTURE_LIMIT: int = int(os.getenv("DEPARTURE_LIMIT", "50"))

# Wall-clock zone the schedule is published in; used for "now" and "today"
LOCAL_TIMEZONE: str = os.getenv("LOCAL_TIMEZONE", "Asia/Dubai")

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()
]
