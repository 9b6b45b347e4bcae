import os


# -----------------------------
# Config
# -----------------------------
# Support BOTH env var names (AI Studio snippets export API_KEY)
GEMINI_API_KEY = (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash").strip()
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))
GEMINI_TIMEOUT = float(os.getenv("GEMINI_TIMEOUT", "60"))

GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").strip().rstrip("/")
GITHUB_TIMEOUT = float(os.getenv("GITHUB_TIMEOUT", "20"))
GITHUB_PRIVATE_REPOS = os.getenv("GITHUB_PRIVATE_REPOS", "").strip().lower() in ("1", "true", "yes")

MAX_CITATIONS = int(os.getenv("MAX_CITATIONS", "4"))  # sources shown under the results grid

# In-memory sessions: least recently used are evicted past SESSION_MAX,
# and a session with no transition for SESSION_TTL seconds is dropped.
SESSION_MAX = int(os.getenv("SESSION_MAX", "1000"))
SESSION_TTL = float(os.getenv("SESSION_TTL", "3600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# CORS for the JSON API, e.g.
# ALLOWED_ORIGINS=https://your-frontend.vercel.app,http://localhost:3000
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
