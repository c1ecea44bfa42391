"""
Custom exceptions for the voice relay.

These exceptions are intentionally simple and descriptive.
They are used across:

  - core/api/          (provider failures)
  - runtime/agents/    (session lookups, turn failures)
  - runtime/api/       (protocol errors on the WebSocket)

Placing them at the project root (exceptions/) avoids circular imports
and keeps exception types consistent across modules.
"""


class InvalidSessionException(Exception):
    """
    Raised when a handler is given a session_id that is unknown or has
    already been torn down (explicit `end`, disconnect or idle sweep).

    The message is the one shown to clients in the `error` event.
    """

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__("Invalid session ID")


class ProviderFailureException(Exception):
    """
    Raised when an external service (transcription, completion or speech
    synthesis) fails or does not answer before its deadline.

    str(exc) is the provider's message verbatim so it can be passed
    straight to the client.
    """

    def __init__(self, provider, message):
        self.provider = provider
        self.message = str(message)
        super().__init__(self.message)


class MalformedMessageException(Exception):
    """
    Raised when an inbound WebSocket frame cannot be understood.

    Example:
        '{"type": "audio", "audio": "<base64>"}'  ← expected
        'not json' / '{"audio": 1}'              ← raises this exception
    """

    def __init__(self, details):
        self.details = details
        super().__init__(f"Malformed message: {details}")
