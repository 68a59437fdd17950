"""i-Mitra: citizen grievance tracking for municipal departments."""

__version__ = "1.0.0"
