"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    middleware      — request logging & request ids
    cache           — memory / Redis TTL cache layer
"""
