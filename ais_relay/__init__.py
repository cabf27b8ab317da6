"""AIS to NMEA 0183 relay.

Re-encodes vessel telemetry as AIVDM sentences and fans them out over
TCP, WebSocket and UDP.
"""

__version__ = "0.1.0"
