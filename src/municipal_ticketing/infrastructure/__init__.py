"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database engine, sessions and transaction scope
"""
