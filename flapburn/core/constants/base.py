GAS_BUFFER_MULTIPLIER = 1.1
SUGGESTED_PRIORITY_FEE_MULTIPLIER = 1.5
SUGGESTED_GAS_PRICE_MULTIPLIER = 1.1
MAX_BASE_FEE_GROWTH_MULTIPLIER = 2

DEFAULT_HTTP_TIMEOUT = 30.0  # HTTP client timeout
DEFAULT_RECEIPT_POLL_INTERVAL = 1.0  # seconds between receipt polls

MANTISSA = 10**18
MAX_UINT256 = 2**256 - 1

# Refresh cadence and the one-shot connect prompt (seconds)
DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_AUTO_CONNECT_DELAY_SECONDS = 0.8

# Loss dividend claims are offered from 0.001 native pending
MIN_LOSS_DIVIDEND_CLAIM_WEI = 10**15

DEFAULT_SUBSCRIBE_SHARES = 1
DEFAULT_TOKEN_SYMBOL = "TOKEN"
NATIVE_SYMBOL = "BNB"

REFERRAL_QUERY_PARAM = "ref"
