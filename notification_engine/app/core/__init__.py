"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables, settings & dispatch config
    logging_config  — structured JSON / pretty console logging
    errors          — exception hierarchy & FastAPI handlers
"""
