class DkUtilError(Exception):
    """Base exception for all dk_util errors."""

    ...


class InvalidRunIdError(DkUtilError, ValueError):
    """Raised when a string does not have the RUN_<millis>_<suffix> run id format."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Run id must look like 'RUN_<epoch-millis>_<4 digits>', got {value!r}")


class QueryStateAccessError(DkUtilError, ValueError):
    """Raised when reading data or an error message from a query state that does not carry one."""

    ...


class LogConfigError(DkUtilError):
    """Raised when the logging configuration file cannot be parsed or holds invalid values."""

    ...
