"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / console logging
    errors          — exception hierarchy & handlers
    middleware      — request IDs and timing
    health          — health check aggregation
    database        — async SQLAlchemy engine (SQL backend)
    cache           — Redis cache layer
"""
