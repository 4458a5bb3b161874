import os

# CORS settings
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Seed the standard trade catalogue on startup when the store is empty
SEED_DEFAULT_TRADES = os.getenv("SEED_DEFAULT_TRADES", "true").lower() in ("1", "true", "yes")

# Uvicorn server settings
UVICORN_HOST = os.getenv("UVICORN_HOST", "127.0.0.1")
UVICORN_PORT = int(os.getenv("UVICORN_PORT", "8000"))
UVICORN_RELOAD = os.getenv("UVICORN_RELOAD", "true").lower() in ("1", "true", "yes")
