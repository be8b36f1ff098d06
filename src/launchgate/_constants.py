"""Internal constants shared across the library."""

ATTRIBUTION_BASE_URL = "https://gcdsdk.appsflyer.com/install_data/v4.0"
DESTINATION_URL = "https://frozenguiide.com/config.php"
USER_AGENT = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148"

# Attribution field that marks how an install was acquired.
ORGANIC_KEY = "af_status"
ORGANIC_VALUE = "Organic"

# Error marker written when the attribution provider reports failure.
ERROR_KEY = "error"
ERROR_MESSAGE_KEY = "error_message"

# Routing keys are folded into the merged record under this prefix.
ROUTING_PREFIX = "deep_"

# Setup status stored after a successful remote resolution.
STATUS_ACTIVE = "Active"

# ------------------------------------------------------------------
# Timings (seconds)
# ------------------------------------------------------------------

COALESCE_WINDOW_S = 2.5
DEADLINE_S = 30.0
REATTRIBUTION_GRACE_S = 5.0
REQUEST_TIMEOUT_S = 30.0
RESOURCE_TIMEOUT_S = 90.0
DESTINATION_RETRY_WAITS_S: tuple[float, ...] = (4.5, 9.0, 18.0)
PROMPT_COOLDOWN_S = 3 * 86400.0
