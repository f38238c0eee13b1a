"""Shared defaults for the LaunchGrid engine."""

DEFAULT_ENGAGEMENT_DURATION_DAYS = 7
DEFAULT_CHECK_INTERVAL_MINUTES = 60
DEFAULT_JOB_POLL_LIMIT = 5
MAX_JOB_POLL_LIMIT = 50
METRIC_HISTORY_LIMIT = 50

# Extension delivery lease and abandoned in_progress detection
DEFAULT_LEASE_MINUTES = 5

DEFAULT_GENERATION_TIMEOUT_SECONDS = 60.0

DEFAULT_PLATFORM = "twitter"
DEFAULT_EXTENSION_URL = "https://x.com/home"
EXTENSION_PLACEHOLDER = "Waiting for Browser Extension..."
SELECTION_RATIONALE = "Selected all high-relevance items."
SIMULATED_REPLY = "(Simulated Reply) Hey {author}, have you tried using a journal? It helps!"

DEFAULT_AUDIT_QUEUE_SIZE = 1000
DEFAULT_AUDIT_BATCH_SIZE = 50
DEFAULT_AUDIT_MAX_RETRIES = 3
