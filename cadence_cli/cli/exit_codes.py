"""Standard exit codes for the Cadence CLI.

Used across commands for consistent error reporting and scripting
support.
"""


class ExitCode:
    """Standard exit codes for the Cadence CLI.

    Cadence-specific codes:
    - 2: Configuration error
    - 3: Delivery error (transport rejected or unreachable)
    - 4: Daemon error (already running, cannot signal)
    - 6: Storage error
    - 7: Invalid argument
    - 8: Not found
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    DELIVERY_ERROR = 3
    DAEMON_ERROR = 4
    STORAGE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8

    # 128 + SIGINT
    CANCELLED = 130

    @classmethod
    def get_name(cls, code: int) -> str:
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.DELIVERY_ERROR: "DELIVERY_ERROR",
            cls.DAEMON_ERROR: "DAEMON_ERROR",
            cls.STORAGE_ERROR: "STORAGE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")
