"""Real-time chat delivery core.

Services:
    - PresenceRegistry: user id -> live connection (last-connect-wins).
    - ConnectionSession: one live connection and its joined rooms.
    - MessageStore: persistence gateway (in-memory and DuckDB backends).
    - DeliveryRouter: push-now vs. leave-pending per recipient.
    - BacklogDispatcher: drains undelivered messages on connect.
    - ChatManager: per-connection event handling tying these together.
"""
