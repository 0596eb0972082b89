"""HTTP endpoints of the tunnel server."""
