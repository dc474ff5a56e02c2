"""HTTP service around the geofencing engine."""
