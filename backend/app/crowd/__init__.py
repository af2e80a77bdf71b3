"""
crowd — Crowd-density monitoring.

Sub-modules:
    models      — CrowdLocation value type and the density state machine
    tracker     — CrowdDensityTracker: writes, nearby queries, active-alert cache
    simulation  — Synthetic time-of-day crowd load
"""
