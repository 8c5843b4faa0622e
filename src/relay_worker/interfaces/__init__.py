"""
Worker Interfaces Layer

Command line entry point, pull-style SDK and the wiring shared by both.
"""
