"""
Server Gateway - host side of the remote input relay.

This module runs on the desktop host and:
- Accepts one device over WebSocket, authorized by a short PIN
- Decodes relay commands, discarding malformed frames
- Bridges commands to MQTT for the input injector
"""

__version__ = "1.0.0"
