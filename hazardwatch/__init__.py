"""
hazardwatch — coastal hazard pattern analysis and prediction fusion engine.

Packages:
    core        — settings, logging, errors, database, cache, health
    ingestion   — ocean/weather snapshot client (Open-Meteo)
    ml          — trend estimation, pattern detectors, early-warning
                  arbiter, text classifiers, context fusion
    prediction  — rule checks and the multi-location orchestrator
    storage     — observation / prediction stores (memory, SQL)
    alerts      — notification dispatchers
    jobs        — background job manager and scheduler
    api         — FastAPI routers
"""

__version__ = "1.0.0"
