import os

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/matchmaker")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

QUEUE_ENABLED = os.getenv("QUEUE_ENABLED", "true").lower() == "true"
MATCHMAKING_INTERVAL_SECONDS = float(os.getenv("MATCHMAKING_INTERVAL_SECONDS", "30"))

MIN_AGE = int(os.getenv("MIN_AGE", "18"))
MAX_AGE_GAP = int(os.getenv("MAX_AGE_GAP", "5"))
# Partners of a MIN_AGE user may be at most this many years older.
MIN_AGE_PARTNER_SPAN = int(os.getenv("MIN_AGE_PARTNER_SPAN", "2"))
MAX_AGE = int(os.getenv("MAX_AGE", "120"))

MAX_COMPATIBILITY_SCORE = 100
BREAKUP_REASON_MAX_LENGTH = int(os.getenv("BREAKUP_REASON_MAX_LENGTH", "500"))
RECENTLY_QUEUED_MINUTES = int(os.getenv("RECENTLY_QUEUED_MINUTES", "5"))

SYSTEM_ACTOR = "SYSTEM"
ADMIN_ACTOR_PREFIX = "ADMIN_"
