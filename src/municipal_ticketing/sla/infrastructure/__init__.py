"""
SLA Infrastructure Layer
=========================

External integrations for the SLA clock: YAML config with hot-reload
and the sweep scheduler.
"""

from municipal_ticketing.sla.infrastructure.external import SLAConfigManager, SLAScheduler

__all__ = ["SLAConfigManager", "SLAScheduler"]
