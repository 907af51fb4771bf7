"""Root conftest — shared test configuration."""

import os

# Ensure tests never reach a real database or marketplace account
os.environ.setdefault(
    "STEAMBOT_DATABASE_URL", "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("STEAMBOT_ACCOUNT_NAME", "test-bot")
os.environ.pop("STEAMBOT_MARKETPLACE_API_KEY", None)
