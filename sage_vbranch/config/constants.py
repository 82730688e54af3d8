"""Hard-coded configuration constants not meant to be user-configurable."""

STATE_DIR_NAME = "sage"
STATE_FILE_NAME = "vbranches.json"
CONFIG_FILE_NAME = "config.json"
OPERATION_MARKER_NAME = "operation.lock"
DAEMON_STATUS_FILE_NAME = "daemon.json"
DEFAULT_PID_FILE_NAME = "daemon.pid"
DEFAULT_GLOBAL_CONFIG_DIR = "~/.config/sage"
STATE_DIR_MODE = 0o700
MAX_BRANCH_NAME_LENGTH = 50
