import os

# Settings are read at import time; point them at a throwaway database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MAIL_ENABLED", "false")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
