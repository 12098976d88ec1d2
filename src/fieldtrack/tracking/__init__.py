"""
Field Agent Tracking Module
===========================

Bounded Context for real-time tracking of field technicians.

Responsibilities:
- Ingest GPS location reports with a staleness guard
- Infer each agent's operational status from position, motion and deadlines
- Score SLA breach risk from live ETA against the deadline
- Evaluate geofence containment for the latest position
- Cluster agents for map rendering at different zoom levels
"""

__version__ = "1.0.0"
