"""
Jobs package — background prediction/training runs and the interval scheduler.
"""
