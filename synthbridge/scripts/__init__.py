"""
Command-line entry points for synthbridge.
"""
