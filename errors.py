"""Error taxonomy shared by the services and mapped to HTTP in main.py."""


class LoanLinkError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(LoanLinkError):
    """Malformed input or a reference to something that does not exist."""
    status_code = 400


class AuthenticationError(LoanLinkError):
    status_code = 401


class AuthorizationError(LoanLinkError):
    """Caller lacks the role or ownership for the operation."""
    status_code = 403


class NotFoundError(LoanLinkError):
    status_code = 404


class InvalidTransitionError(LoanLinkError):
    """A state machine rule was violated, including a lost race."""
    status_code = 409


class DependencyError(LoanLinkError):
    """The document store or the payment gateway failed."""
    status_code = 503
