"""
Alerts package — notification dispatch for finished predictions.
"""
