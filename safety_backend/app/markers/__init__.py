"""
markers — Shared map markers.

Sub-modules:
    models       — Marker and ChangeEvent data structures
    store        — In-memory and SQL marker storage
    coordinator  — Store-then-publish orchestration, SOS hand-off
"""
