"""
Inscribe CLI Commands Package

Command modules for the inscribe CLI.
"""

__all__ = ['inscribe', 'config']
