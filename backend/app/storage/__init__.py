"""
storage — Record persistence for crowd locations and emergency alerts.

Sub-modules:
    base    — Store interface and the optimistic read-modify-write loop
    memory  — Dict-backed stores (default)
    sql     — SQLAlchemy stores (PostgreSQL / SQLite)
"""
