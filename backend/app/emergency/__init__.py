"""
emergency — Emergency-alert lifecycle and automatic detection.

Sub-modules:
    models     — EmergencyAlert value type and pure lifecycle transitions
    registry   — EmergencyAlertRegistry: create, vote, resolve, sweep, query
    broadcast  — Reach estimate, notification text, response actions
    detector   — EmergencyDetector: critical hotspot → stampede_risk alert
"""
