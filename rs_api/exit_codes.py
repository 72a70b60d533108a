"""Process exit codes returned by the rs-api command.

Each error class in :mod:`rs_api.errors` carries one of these so shell
scripts can tell failure classes apart without parsing stderr.
"""

EXIT_SUCCESS = 0
EXIT_GENERIC_FAILURE = 1
EXIT_INVALID_USAGE = 2
EXIT_AUTH_FAILURE = 3
EXIT_CLIENT_ERROR = 4
EXIT_SERVER_ERROR = 5
EXIT_CONNECTION_ERROR = 6
