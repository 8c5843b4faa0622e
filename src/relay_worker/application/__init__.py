"""
Worker Application Layer

Use cases built on the domain: the worker session, loop and services.
"""
