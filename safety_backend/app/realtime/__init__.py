"""
realtime — Live marker change feed.

Sub-modules:
    broker  — Observer registry and fan-out
    sse     — Server-Sent Events framing for observers
"""
