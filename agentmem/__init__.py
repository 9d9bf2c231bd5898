"""
AgentMem Core Package
"""

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("agentmem")
except Exception:
    # Fallback for development or if package not installed
    __version__ = "0.1.0"
