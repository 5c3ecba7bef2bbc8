"""Pulse Trading Hub backend."""
