"""Tool contract and the tool registry.

Exports:
    BaseTool: Convenience base class for tool implementations.
    Tool: Protocol every tool satisfies.
    ToolManager: Registry that validates, confirms and runs tool calls.
"""

from openjragent.tools.base import BaseTool as BaseTool
from openjragent.tools.base import Tool as Tool
from openjragent.tools.base import ToolParameter as ToolParameter
from openjragent.tools.manager import ToolManager as ToolManager
