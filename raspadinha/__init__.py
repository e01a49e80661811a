"""Raspadinha: liquidação de raspadinhas e conciliação PIX."""

__version__ = "0.1.0"
