"""
Per-request security context resolution.
"""

from .context import SecurityContext, SecurityContextResolver, demo_security_context

__all__ = ["SecurityContext", "SecurityContextResolver", "demo_security_context"]
