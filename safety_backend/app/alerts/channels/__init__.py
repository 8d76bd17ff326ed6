"""
channels — SMS delivery backends.

Each channel exposes:
    async send(recipient, text) → NotificationOutcome

Channels are stateless apart from provider clients. Timeouts live in the
dispatcher; there are no retries.
"""
