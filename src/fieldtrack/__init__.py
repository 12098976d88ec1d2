"""
FieldTrack
==========

Real-time tracking core for field service technicians.

Modules:
- tracking: status inference, SLA risk, location pipeline, geofencing
  and map clustering for field agents

Clean Architecture Layers:
- Application: Services, DTOs and repository interfaces
- Domain: Entities, value objects and pure domain services
- Infrastructure: Database, repositories and configuration providers
"""

__version__ = "1.0.0"
