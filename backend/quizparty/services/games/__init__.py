"""Game domain services: lifecycle, progress, timers and scoring.

This package contains pure(ish) domain logic that should be imported by
HTTP routes, socket handlers and session clients, keeping transport
concerns separated from core game mechanics.
"""
