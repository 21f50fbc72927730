"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~steadyhttp.exceptions.SteadyError` subclass.  The
``steadyhttp`` CLI exits with these codes so shell wrappers can tell a
rejected request from a dead network without parsing stderr.

Example::

    $ steadyhttp request GET https://api.example.com/missing
    $ echo $?
    4   # EXIT_CLIENT_ERROR -- the server answered with a client error
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CLIENT_ERROR = 4
"""The remote API answered with a status classified as a client error."""

EXIT_SERVER_ERROR = 5
"""The remote API answered with a status classified as a server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_PARSE_ERROR = 7
"""The response body could not be decoded into the requested shape."""
