"""
Ingestion package — external ocean/weather snapshot clients.
"""
