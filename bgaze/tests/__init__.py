import os

# Tests never talk to real Postgres, Redis, SMTP or S3.
os.environ.setdefault("USE_IN_MEMORY_BACKENDS", "true")
os.environ.setdefault("JWT_SECRET", "test-secret")
