"""Internal constants shared across the library."""

USER_AGENT = "pydevtwin/1"

AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})
NOT_FOUND_STATUS_CODES: frozenset[int] = frozenset({404})
# Throttling and gateway errors are expected to clear up on their own.
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

# GraphQL ``errorType`` values that mean the bearer token was rejected.
UNAUTHORIZED_ERROR_TYPES: frozenset[str] = frozenset(
    {
        "Unauthorized",
        "UnauthorizedException",
        "UnauthenticatedException",
    }
)

LATEST_READINGS_QUERY_NAME = "latestReadings"

# Full-extent sentinels for the chart window.
DATA_MIN = "dataMin"
DATA_MAX = "dataMax"
