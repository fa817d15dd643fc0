"""Networked two-player chess: host/client session protocol."""
