import os

# Settings are read once; point them at an in-memory database before internhub is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WORKER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
