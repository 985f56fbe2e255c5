"""
Command-line interface for streamdelay.
"""
