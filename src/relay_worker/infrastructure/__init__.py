"""
Infrastructure Layer

Adapters for the wire protocol, transports, configuration, logging and
resource monitoring.
"""
