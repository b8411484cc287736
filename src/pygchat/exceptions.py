from __future__ import annotations


class PygchatError(Exception):
    """Base error for the pygchat library."""


class TransportError(PygchatError):
    """An RPC (or the event channel) could not complete."""


class RpcError(TransportError):
    """
    The server answered, but the response header carries an error status.

    `status_code` mirrors the response header field; `description` is the
    server-provided text (may be empty).
    """

    def __init__(self, method: str, *, status_code: int, description: str = "") -> None:
        super().__init__(f"{method} failed (status={status_code}): {description or 'no description'}")
        self.method = method
        self.status_code = status_code
        self.description = description


class InvalidIdentifierError(PygchatError):
    """An identifier failed the format check; nothing was sent."""

    def __init__(self, value: object, *, kind: str = "identifier") -> None:
        super().__init__(f"invalid {kind}: {value!r}")
        self.value = value
        self.kind = kind


class UnknownConversationError(PygchatError):
    """The action needs a conversation the directory does not know about."""


class DecodeError(PygchatError):
    """Malformed payload received from the server."""


class AttachmentSendError(PygchatError):
    """
    Uploading an attachment failed, so the message was not sent.

    `stage` is `"session"` (obtaining the upload session), `"upload"` (sending
    the bytes) or `"load"` (reading the local attachment).
    """

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class ConversationCreateError(PygchatError):
    """The server did not create the requested conversation."""
