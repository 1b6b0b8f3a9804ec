"""Process exit codes used by the fattable CLI."""

SUCCESS = 0
EXECUTION_FAILURE = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
NOT_FOUND = 4
