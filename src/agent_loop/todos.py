# todos.py
# Todo items kept as a single markdown file (workspace/todos.md) so they
# stay readable and editable by hand.

import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

Priority = Literal["low", "medium", "high"]
Status = Literal["pending", "completed"]

TODOS_FILENAME = "todos.md"

_HEADING_RE = re.compile(r"^### (.+?) \(ID: (.+?)\)\s*$")
_PRIORITY_RE = re.compile(r"^\*\*Priority:\*\* (low|medium|high)")
_DUE_RE = re.compile(r"^\*\*Due Date:\*\* (\d{4}-\d{2}-\d{2})")
_NO_DESCRIPTION = "No description provided."


class TodoItem(BaseModel):
    id: str
    title: str
    description: str = ""
    priority: Priority = "medium"
    status: Status = "pending"
    due_date: str | None = None


# ---------------------------------------------------------------------------
# Markdown rendering / parsing
# ---------------------------------------------------------------------------


def _format_todo(todo: TodoItem) -> str:
    checkbox = "[x]" if todo.status == "completed" else "[ ]"
    lines = [
        f"### {todo.title} (ID: {todo.id})",
        "",
        f"- {checkbox} {todo.title}",
        f"**Priority:** {todo.priority}",
    ]
    if todo.due_date:
        lines.append(f"**Due Date:** {todo.due_date}")
    lines += ["", "**Description:**", todo.description or _NO_DESCRIPTION, "", "---", "", ""]
    return "\n".join(lines)


def render_markdown(todos: list[TodoItem]) -> str:
    now = datetime.now(timezone.utc).isoformat()
    pending = [t for t in todos if t.status == "pending"]
    completed = [t for t in todos if t.status == "completed"]
    content = (
        "# Todo List\n\n"
        "## Metadata\n"
        f"- **Last Modified:** {now}\n"
        f"- **Total Items:** {len(todos)}\n"
        f"- **Pending:** {len(pending)}\n"
        f"- **Completed:** {len(completed)}\n\n"
        "---\n\n"
    )
    if not todos:
        return content + "## No todos yet\n\nAdd your first todo item to get started!\n\n---\n"
    if pending:
        content += f"## Pending Tasks ({len(pending)})\n\n" + "".join(_format_todo(t) for t in pending)
    if completed:
        content += f"## Completed Tasks ({len(completed)})\n\n" + "".join(_format_todo(t) for t in completed)
    return content


def parse_markdown(content: str) -> list[TodoItem]:
    todos: list[TodoItem] = []
    current: dict | None = None
    description: list[str] = []
    in_description = False

    def flush() -> None:
        if current is not None:
            text = "\n".join(description).strip()
            current["description"] = "" if text == _NO_DESCRIPTION else text
            todos.append(TodoItem(**current))

    for line in content.splitlines():
        heading = _HEADING_RE.match(line)
        if heading:
            flush()
            current = {"title": heading.group(1), "id": heading.group(2)}
            description = []
            in_description = False
        elif current is None:
            continue
        elif in_description:
            if line.startswith("---"):
                in_description = False
            else:
                description.append(line)
        elif line.startswith("- ["):
            current["status"] = "completed" if line.startswith("- [x]") else "pending"
        elif _PRIORITY_RE.match(line):
            current["priority"] = _PRIORITY_RE.match(line).group(1)
        elif _DUE_RE.match(line):
            current["due_date"] = _DUE_RE.match(line).group(1)
        elif line.startswith("**Description:**"):
            in_description = True
    flush()
    return todos


# ---------------------------------------------------------------------------
# TodoStore
# ---------------------------------------------------------------------------


class TodoStore:
    """Load-modify-save access to the todos file, serialized by a lock."""

    def __init__(self, root: Path) -> None:
        self.path = Path(root) / TODOS_FILENAME
        self._lock = threading.Lock()

    def _load(self) -> list[TodoItem]:
        if not self.path.exists():
            return []
        return parse_markdown(self.path.read_text(encoding="utf-8"))

    def _save(self, todos: list[TodoItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_markdown(todos), encoding="utf-8")

    def items(self, status: str = "all") -> list[TodoItem]:
        with self._lock:
            todos = self._load()
        if status == "all":
            return todos
        return [t for t in todos if t.status == status]

    def add(self, todo: TodoItem) -> TodoItem:
        with self._lock:
            todos = self._load()
            if any(t.id == todo.id for t in todos):
                raise ValueError(f"Todo with ID {todo.id} already exists")
            todos.append(todo)
            self._save(todos)
        return todo

    def update(self, todo_id: str, **changes: object) -> TodoItem:
        with self._lock:
            todos = self._load()
            for index, todo in enumerate(todos):
                if todo.id == todo_id:
                    updated = TodoItem.model_validate({**todo.model_dump(), **changes})
                    todos[index] = updated
                    self._save(todos)
                    return updated
        raise LookupError(f"Todo with ID {todo_id} not found")
