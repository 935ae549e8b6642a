from agent_directory.network.monitor import ConnectivityMonitor, route_available

__all__ = ["ConnectivityMonitor", "route_available"]
