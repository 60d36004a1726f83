"""Servidor AsyncIO de PharmaAlert."""
