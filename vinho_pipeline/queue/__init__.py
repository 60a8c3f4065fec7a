"""Queue mechanics: claiming, retry policy and idempotency keys."""
