"""
Client Remote Control - turns this machine into a remote touchpad,
keyboard and microphone for a desktop host.

Gestures, clicks, keys, text and live audio are sent as JSON relay
commands to a host gateway over a single WebSocket connection secured
by a short PIN.
"""

__version__ = "1.0.0"
