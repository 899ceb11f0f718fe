"""Process exit codes.

Scripts that wrap ``authgate login`` can branch on these instead of parsing
stderr: 3 means the person said no (or never answered), 6 means the
network is down, 130 means someone pressed Ctrl-C.
"""

EXIT_SUCCESS = 0

EXIT_GENERIC_FAILURE = 1
"""Unclassified failure, including bad configuration."""

EXIT_AUTH_FAILURE = 3
"""Denied, expired device code, rejected token, or a malformed token response."""

EXIT_NOT_FOUND = 4
"""No stored credential for the requested client."""

EXIT_SERVER_ERROR = 5
"""The authorization server answered with an unexpected status or body."""

EXIT_CONNECTION_ERROR = 6
"""The authorization server was unreachable (refused, DNS, timeout)."""

EXIT_STORAGE_ERROR = 8
"""The token file could not be locked, read or written."""

EXIT_CANCELLED = 130
"""SIGINT or SIGTERM, as shells report it."""
