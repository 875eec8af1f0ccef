"""
Core package — cross-cutting concerns.

Modules:
    config          — settings from environment / .env
    logging_config  — JSON and console log formatting, request context
    middleware      — request ids and access log
    errors          — exception hierarchy & handlers
    health          — per-component health probes
    database        — async SQL engine and sessions
    cache           — Redis snapshot cache
    rate_limiter    — shared gate for external fetches
"""
