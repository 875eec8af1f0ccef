"""
Storage package — observation and prediction persistence.

Modules:
    base    — BoundingBox and the store protocols
    memory  — in-process stores (tests, single-node dev)
    sql     — SQLAlchemy async stores (PostgreSQL in production)
"""
