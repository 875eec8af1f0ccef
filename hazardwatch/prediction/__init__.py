"""
Prediction package — current-condition rules and the batch orchestrator.
"""
