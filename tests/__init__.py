"""
Test suite for serialio.

Unit tests run against in-memory devices; integration tests marked
``virtual_ports`` need socat to create PTY pairs.
"""
