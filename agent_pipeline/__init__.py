"""
Agent Pipeline

Background execution core: agent executions, workflow step machine,
webhook deliveries and notifications with retry, lane routing and events.
"""

__version__ = "1.0.0"
