# matrix/errors.py


class MatrixError(Exception):
    """Base class for matrix network errors."""


class ValidationError(MatrixError):
    """
    Raised before any write is attempted when a request breaks a local rule
    (duplicate username, missing contact fields, depth limit, bad transition).
    """

    def __init__(self, message: str, code: str = "invalid"):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class RemoteUnavailable(MatrixError):
    """Timeout, transport failure or malformed response from the remote store."""

    def __init__(self, message: str = "Remote store unavailable"):
        super().__init__(message)
        self.message = message
