"""Tool framework — import tool modules here to register them."""

# Import tool modules so their @registry.tool() decorators execute.
from rachel.tools import scheduler_tools  # noqa: F401
from rachel.tools.registry import registry

__all__ = ["registry"]
