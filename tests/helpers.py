"""Constants shared by conftest.py and the API test modules."""

# TestClient requests all come from this address (request.client.host).
TEST_CLIENT_IP = "testclient"

GOOD_PASSWORD = "correct-horse"  # noqa: S105

# Every env var Settings reads for limiter behaviour. Fixtures clear these so
# a developer's shell or .env cannot change test thresholds.
RATE_LIMIT_ENV_VARS = (
    "LOGIN_WINDOW_MS",
    "LOGIN_MAX_ATTEMPTS",
    "LOGIN_LOCK_MS",
    "SUBMIT_WINDOW_MS",
    "SUBMIT_MAX_PER_IP",
    "SUBMIT_LOCK_MS",
    "EMAIL_DAILY_WINDOW_MS",
    "EMAIL_MAX_PER_DAY",
    "EMAIL_LOCK_MS",
    "CLEANUP_INTERVAL_MS",
    "DISABLE_RATE_LIMIT",
)
