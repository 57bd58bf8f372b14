"""Error taxonomy for the real-time delivery core.

None of these errors is fatal to the process. Each one is contained to the
connection or message that produced it:

    - AuthFailure: connection rejected before any core state is created.
    - StoreUnavailable: a persistence call failed or timed out; its side
      effect is treated as not having happened.
    - TransportClosed: a push target is no longer reachable; folded into
      the "undeliverable" count and never surfaced to the sender.
"""


class ChatError(Exception):
    """Base class for chat core errors."""


class AuthFailure(ChatError):
    """The connection could not be tied to a verified user identity."""


class StoreUnavailable(ChatError):
    """A message store call failed."""


class TransportClosed(ChatError):
    """The underlying transport is closed or refused the frame."""
