"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Tickets, SLA and Assignment).

Architecture Pattern: Modular Monolith
- Each module (tickets, sla, assignment) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add lifecycle, SLA or assignment business rules to shared kernel.
"""
