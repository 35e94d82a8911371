"""
Infrastructure Layer
=====================

Low-level technical concerns shared by every bounded context:
- Logging setup
- Notification event publishing and delivery
"""
