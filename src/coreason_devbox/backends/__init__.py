"""
Sandbox provisioning backends.
"""

from .e2b import E2BBackend, E2BRunningCommand, E2BSandboxHandle

__all__ = ["E2BBackend", "E2BRunningCommand", "E2BSandboxHandle"]
