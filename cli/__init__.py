"""
Inscribe command line interface.
"""
