"""
Prayer API Backend: Services Layer
====================================

What:  Business rules between the routes (HTTP) and the database.

Service Inventory:
    - ParticipationStore: prayer requests, join/complete state machine,
      counters, statistics and the expiry sweep
    - TopicCatalog: grouped topic hierarchy and its seed data
    - DeviceRegistry: push-token registration and device diagnostics
    - NotificationDispatcher: push flows and bounded fan-out
    - PushProvider (abstract): delivery contract
    - FirebasePushProvider / NullPushProvider: FCM and the disabled fallback

Stateless services are module-level singletons taking the session per call;
the dispatcher and push provider are built in the lifespan.
"""
