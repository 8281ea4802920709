"""
HTTP service: query surface, webhook receiver and engine wiring.
"""

from aircache.service.server import AircacheService, build_app, run_service

__all__ = ["AircacheService", "build_app", "run_service"]
