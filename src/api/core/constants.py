# JWT Configuration
JWT_ALGORITHM = "HS256"

# Rate limiting settings
ANALYSIS_RATE_LIMIT = 10  # analysis requests per user per window
ANALYSIS_RATE_LIMIT_WINDOW_SECONDS = 60
GLOBAL_IP_RATE_LIMIT = 100  # requests per IP per window
GLOBAL_IP_RATE_LIMIT_WINDOW_SECONDS = 60

# Webhook payload guard
MAX_WEBHOOK_PAYLOAD_BYTES = 1024 * 1024

# Server-Sent Events
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Transactions history
DEFAULT_TRANSACTIONS_LIMIT = 50
MAX_TRANSACTIONS_LIMIT = 100

# Cost estimates
MAX_ESTIMATE_DURATION_SECONDS = 24 * 60 * 60
