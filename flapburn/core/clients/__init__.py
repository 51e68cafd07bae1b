from flapburn.core.clients.MonitorClient import MonitorClient

__all__ = ["MonitorClient"]
