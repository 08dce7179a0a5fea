"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class ToolName(str, Enum):
    """Closed set of tools the agent may call."""

    BASH = "bash"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    LIST_FILES = "list_files"
    FETCH_URL = "fetch_url"
    UPDATE_MEMORY = "update_memory"
    CREATE_TASK = "create_task"
    CALCULATE = "calculate"


class Tool(ABC):
    """Base class for all agent tools."""

    name: ToolName
    description: str
    parameters_schema: dict[str, Any]

    @abstractmethod
    async def run(self, group_id: str, **kwargs: Any) -> Any:
        """Execute tool with validated arguments on behalf of ``group_id``."""
