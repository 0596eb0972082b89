"""
splithttp: carry a TCP stream over split HTTP requests.

Uplink bytes travel as numbered POST bodies, downlink bytes as one streamed
GET response. See ``splithttp.server.app`` for the server entry point.
"""

__version__ = "0.1.0"
