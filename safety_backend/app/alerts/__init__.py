"""
alerts — SOS broadcasting to the emergency roster.

Sub-modules:
    channels/    — SMS delivery backends (Twilio, simulation)
    dispatcher   — Roster fan-out, per-send timeout, outcome aggregation
    models       — Data structures shared across the system
"""
