"""Exception hierarchy for mailsweep.

Gmail failures split into AuthError (re-authenticate) and ProviderError
(anything else the API rejected). Neither is retried. InvalidActionError
signals a caller bug and is raised before any network call.
"""


class MailsweepError(Exception):
    """Base class for all mailsweep errors."""

    pass


class ConfigurationError(MailsweepError):
    """Raised at startup when required configuration is missing."""

    pass


class GmailError(MailsweepError):
    """Base class for failures reported by the Gmail API."""

    pass


class AuthError(GmailError):
    """Raised when the access token is missing, invalid or expired."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)
        self.message = message


class ProviderError(GmailError):
    """Raised when the Gmail API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Gmail API error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class InvalidActionError(MailsweepError):
    """Raised for an unknown action kind or a label action without a label id."""

    pass


class ParseError(MailsweepError):
    """Raised when AI output is not JSON or does not match the expected shape."""

    def __init__(self, message: str, raw_content: str = "") -> None:
        super().__init__(message)
        self.raw_content = raw_content


class ProxyError(MailsweepError):
    """Raised when the AI proxy answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"AI proxy error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message
