"""
Query gateway: cube metadata and query execution over HTTP.
"""

from .registrar import DEFAULT_BASE_PATH, register_gateway
from .service import GatewayService

__all__ = ["DEFAULT_BASE_PATH", "GatewayService", "register_gateway"]
