"""Server services: uplink buffering, downlink multiplexing, relaying, sessions."""
