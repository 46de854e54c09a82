"""FTP reply codes used by the simpleftp client.

Names follow the meaning of each code in RFC 959.  The first digit of a
code gives its class: 1 preliminary, 2 completion, 3 intermediate,
4 transient failure, 5 permanent failure.
"""

RESTART_MARKER = 110

# Status information
SYSTEM = 211
DIRECTORY = 212
FILE = 213
HELP_MESSAGE = 214
NAME_SYSTEM = 215

# Command results
COMMAND_OK = 200
COMMAND_NOT_IMPLEMENTED = 202
UNKNOWN_COMMAND = 500
PARAMETER_SYNTAX_ERROR = 501
COMMAND_UNIMPLEMENTED = 502
BAD_COMMAND_SEQUENCE = 503
BAD_PARAMETER_FOR_COMMAND = 504

# Service
READY_MINUTE = 120
SERVICE_READY = 220
SERVICE_CLOSING = 221
NOT_AVAILABLE = 421

# Data connection
ALREADY_OPEN = 125
DATA_CONNECTION_OPEN = 225
CLOSING_DATA_CONNECTION = 226
PASSIVE_MODE = 227
CANNOT_OPEN_DATA_CONNECTION = 425
TRANSFER_ABORTED = 426

# Login
LOGGED_IN = 230
NEED_PASSWORD = 331
NEED_ACCOUNT = 332
NOT_LOGGED_IN = 530
ACCOUNT_NEEDED_FOR_FILE_CREATION = 532

# File actions
FILE_OK = 150
FILE_ACTION_OK = 250
PATH_CREATED = 257
FILE_ACTION_PENDING = 350
FILE_ACTION_NOT_TAKEN = 450
LOCAL_ERROR = 451
INSUFFICIENT_STORAGE = 452
FILE_NOT_AVAILABLE = 550
PAGE_TYPE_UNKNOWN = 551
FILE_ACTION_ABORTED = 552
FILE_NAME_NOT_ALLOWED = 553
