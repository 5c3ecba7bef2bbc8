"""Realtime broadcast hub for price, portfolio and signal feeds.

Clients connect to /ws, authenticate with a credential, and subscribe
to price topics or their portfolio feed. Producers push updates through
the hub, directly in-process or via the Redis "pulse:events" channel.

Architecture:
    producer -> publish_event_sync() -> Redis "pulse:events"
    -> redis_subscriber() background task -> BroadcastHub.push_*()
    -> SubscriptionIndex / ConnectionRegistry -> Connection outbox -> client
"""
