# =============================================================================
# Hangbridge -- Constants
# =============================================================================

# -- Timing (seconds) --------------------------------------------------------

ROOM_JOIN_TIMEOUT = 10.0
POLL_INTERVAL = 5.0
SOCKET_OPEN_TIMEOUT = 10.0

# -- Socket transport reconnection --------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_FACTOR = 1.5
RECONNECT_MAX_ATTEMPTS = -1  # -1 = infinite

# -- Inbound channel -----------------------------------------------------------

INBOUND_QUEUE_SIZE = 1000

# -- Socket frames -------------------------------------------------------------

FRAME_STATEFUL = "statefulMessage"
FRAME_STATELESS = "statelessMessage"
FRAME_SERVER = "serverMessage"
FRAME_ERROR = "error"
ACTION_JOIN_ROOM = "joinRoom"

DEFAULT_SOCKET_URL = "wss://socket.prod.tt.fm"

# -- Diagnostic log files ------------------------------------------------------

LOG_DIR = "logs"
STATEFUL_LOG = "statefulMessage.log"
STATELESS_LOG = "statelessMessage.log"
SERVER_LOG = "serverMessage.log"
SOCKET_ERROR_LOG = "socketError.log"
INITIAL_STATE_LOG = "000000_initialState.log"
DEBUG_COUNTER_WIDTH = 6

# -- Status store keys ---------------------------------------------------------

KEY_LAST_MESSAGE_ID = "lastMessageId"
KEY_PRIVATE_TRACKING = "lastPrivateMessageTracking"

# -- Chat service --------------------------------------------------------------

CHAT_PAGE_SIZE = 50
PRIVATE_PAGE_SIZE = 100
CHAT_HTTP_TIMEOUT = 30.0
LATEST_MESSAGE_LOOKBACK_MINUTES = 10

# -- Commands ------------------------------------------------------------------

DEFAULT_COMMAND_SWITCH = "/"
RESPONSE_CHANNEL_REQUEST = "request"
RESPONSE_CHANNEL_PUBLIC = "public"
