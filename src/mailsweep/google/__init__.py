from mailsweep.google.auth import GoogleAuth, google_auth
from mailsweep.google.gmail import (
    ActionKind,
    BatchFailure,
    BatchResult,
    Draft,
    GmailClient,
    Label,
    MessageRef,
    MessageSummary,
    UserInfo,
)

__all__ = [
    "ActionKind",
    "BatchFailure",
    "BatchResult",
    "Draft",
    "GmailClient",
    "GoogleAuth",
    "Label",
    "MessageRef",
    "MessageSummary",
    "UserInfo",
    "google_auth",
]
