"""Tunnel server: HTTP surface, session store and relay engine."""
