"""
notifications — Multi-channel notification dispatch engine.

Sub-modules:
    channels/       — Per-channel transports (email, push, SMS)
    models          — Data structures shared across the engine
    registry        — Configured channels and their transports
    enrichment      — Inbound request → NotificationEnvelope
    engine          — Per-channel delivery, outcome tracking
    retry           — Exponential backoff, scheduled re-delivery
    dispatch_queue  — FIFO queue + one-per-tick worker
    event_bus       — Outcome fan-out to subscribers
    system          — Facade owning all of the above
"""
