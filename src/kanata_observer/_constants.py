"""Internal constants shared across the package."""

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5829
DEFAULT_CONFIG_PATH = "~/.config/kanata-observer/config.toml"
DEFAULT_SCRIPT_PATH = "~/.config/kanata-observer/layer_change.sh"

# ------------------------------------------------------------------
# Connection supervision
# ------------------------------------------------------------------

CONNECT_TIMEOUT_S = 5.0
BACKOFF_INITIAL_S = 1.0
BACKOFF_MAX_S = 30.0
BACKOFF_FACTOR = 2.0
# A connection that stayed up this long resets the backoff to its minimum.
STABLE_CONNECTION_S = 10.0
READ_CHUNK_BYTES = 4096

# kanata records are short single-line JSON; anything this large is garbage.
MAX_LINE_BYTES = 64 * 1024

# ------------------------------------------------------------------
# Process exit codes
# ------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
