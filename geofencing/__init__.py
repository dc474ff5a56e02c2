"""
Geofencing presence engine: beacon presence diffing, geofence events,
counters and the mail double opt-in workflow.
"""

__version__ = "1.0.0"
