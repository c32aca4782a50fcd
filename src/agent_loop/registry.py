# registry.py
# Static catalogue of named tools. Names are unique and fixed at startup;
# the dispatcher is the only caller of handlers.

from typing import Any, Callable, Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from agent_loop.models import ToolSelection

Handler = Callable[[Any], dict[str, Any]]


class DuplicateToolError(Exception):
    """Raised at startup when two tools share a name."""


class Tool(BaseModel):
    """A named, schema-validated local capability."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    description: str
    category: str
    params: type[BaseModel] = Field(..., description="Parameter schema; validated before the handler runs.")
    handler: Handler
    timeout: float | None = Field(default=None, gt=0, description="Overrides the dispatcher deadline.")
    always_enabled: bool = False

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "parameters": self.params.model_json_schema(),
        }


class ToolRegistry:
    """Name → Tool map. Register everything before the first dispatch."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> Tool:
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def by_category(self) -> dict[str, list[Tool]]:
        grouped: dict[str, list[Tool]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.category, []).append(tool)
        return grouped

    def categories(self) -> list[str]:
        return sorted({tool.category for tool in self._tools.values()})

    def enabled_names(self, enabled: Iterable[str] | None = None) -> set[str]:
        """Resolve a caller's tool selection. None or empty means every tool."""
        selected = set(enabled) if enabled else set()
        if not selected:
            return set(self._tools)
        return {
            name for name, tool in self._tools.items() if name in selected or tool.always_enabled
        }

    def selections(self, enabled: Iterable[str] | None = None) -> list[ToolSelection]:
        """Every registered tool, tagged with whether this run may call it."""
        allowed = self.enabled_names(enabled)
        return [
            ToolSelection(
                name=tool.name,
                description=tool.description,
                category=tool.category,
                enabled=tool.name in allowed,
            )
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
