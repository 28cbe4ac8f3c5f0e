"""
Editor lifecycle hooks.

Usage:
    from hooks import HookGateway

    HookGateway(settings, registry, scheduler).run("SessionEnd", sys.stdin)
"""

from hooks.input import HookInput, parse_hook_input, read_hook_input, SESSION_END, SESSION_START
from hooks.gateway import HookGateway

__all__ = [
    "HookInput",
    "parse_hook_input",
    "read_hook_input",
    "SESSION_END",
    "SESSION_START",
    "HookGateway",
]
