# tools.py
# Built-in tool catalogue: parameter schemas and handler implementations.
# The dispatcher is the only caller of these handlers; build_registry()
# binds each one to a ToolContext and registers it.

import re
import subprocess
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from agent_loop.expression import evaluate
from agent_loop.registry import Tool, ToolRegistry
from agent_loop.sessions import SessionTracker
from agent_loop.todos import TodoItem, TodoStore

PYTHON_TIMEOUT = 10.0
SEARCH_TIMEOUT = 20.0

_SESSION_DIR_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class ToolName(str, Enum):
    CREATE_FILE = "create_file"
    CREATE_FOLDER = "create_folder"
    READ_FILE = "read_file"
    LIST_FILES = "list_files"
    GENERATE_CODE = "generate_code"
    EXECUTE_PYTHON = "execute_python"
    CREATE_TODO = "create_todo"
    LIST_TODOS = "list_todos"
    UPDATE_TODO = "update_todo"
    GET_CURRENT_TIME = "get_current_time"
    CALCULATE = "calculate"
    SEARCH_WEB = "search_web"
    FORMAT_FINAL_ANSWER = "format_final_answer"
    START_BROWSER_SESSION = "start_browser_session"
    GET_BROWSER_SESSION_STATUS = "get_browser_session_status"
    CLOSE_BROWSER_SESSION = "close_browser_session"


class PythonExecutionError(Exception):
    """The executed script exited non-zero."""


@dataclass
class ToolContext:
    """Everything handlers may touch outside their own params."""

    workspace: Path
    sessions: SessionTracker
    automation_mode: str = "offline"
    python_timeout: float = PYTHON_TIMEOUT
    todos: TodoStore = field(init=False)

    def __post_init__(self) -> None:
        self.workspace = Path(self.workspace)
        self.todos = TodoStore(self.workspace)

    @property
    def scripts_dir(self) -> Path:
        return self.workspace / "python_scripts"


# ---------------------------------------------------------------------------
# Parameter schemas
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class _WorkspaceParams(_Params):
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Scopes paths under workspace/<sessionId>. Omit for the workspace root.",
    )


class CreateFileParams(_WorkspaceParams):
    path: str = Field(..., min_length=1, description="File path relative to the workspace.")
    content: str = Field(..., description="File content.")


class CreateFolderParams(_WorkspaceParams):
    path: str = Field(..., min_length=1, description="Folder path relative to the workspace.")


class ReadFileParams(_WorkspaceParams):
    path: str = Field(..., min_length=1, description="File path relative to the workspace.")


class ListFilesParams(_WorkspaceParams):
    path: str = Field(default=".", description="Directory relative to the workspace.")


class GenerateCodeParams(_WorkspaceParams):
    language: str = Field(..., min_length=1)
    description: str = Field(..., description="What the code should do.")
    framework: str | None = None
    filename: str | None = Field(default=None, description="Save the code under this workspace path.")


class ExecutePythonParams(_Params):
    code: str = Field(..., min_length=1)
    description: str | None = None


class CreateTodoParams(_Params):
    title: str = Field(..., min_length=1)
    description: str | None = None
    priority: Literal["low", "medium", "high"] = "medium"
    due_date: str | None = Field(default=None, alias="dueDate", pattern=r"^\d{4}-\d{2}-\d{2}$")


class ListTodosParams(_Params):
    status: Literal["all", "pending", "completed"] = "all"


class UpdateTodoParams(_Params):
    id: str = Field(..., min_length=1)
    status: Literal["pending", "completed"] | None = None
    title: str | None = None
    description: str | None = None
    priority: Literal["low", "medium", "high"] | None = None


class GetCurrentTimeParams(_Params):
    timezone: str = Field(default="UTC", description="IANA timezone name.")


class CalculateParams(_Params):
    expression: str = Field(..., min_length=1, description="Arithmetic expression, e.g. 2+3*4.")


class SearchWebParams(_Params):
    query: str = Field(..., min_length=1)
    max_results: int = Field(default=5, ge=1, le=20, alias="maxResults")


class FormatFinalAnswerParams(_Params):
    answer: str
    title: str | None = None


class SessionParams(_Params):
    session_id: str = Field(..., min_length=1, alias="sessionId")


# ---------------------------------------------------------------------------
# Workspace helpers
# ---------------------------------------------------------------------------


def _base_dir(ctx: ToolContext, session_id: str | None) -> Path:
    root = ctx.workspace.resolve()
    if not session_id:
        return root
    if not _SESSION_DIR_RE.match(session_id) or session_id in (".", ".."):
        raise PermissionError(f"SECURITY BLOCK: invalid session id {session_id!r}")
    return root / session_id


def _resolve(ctx: ToolContext, path: str, session_id: str | None) -> tuple[Path, str]:
    """Resolve a workspace path. Anything escaping the base directory is refused."""
    base = _base_dir(ctx, session_id)
    full = (base / path.lstrip("/\\")).resolve()
    if full != base and not full.is_relative_to(base):
        raise PermissionError(f"SECURITY BLOCK: '{path}' is outside the workspace")
    relative = full.relative_to(ctx.workspace.resolve()).as_posix()
    return full, relative or "."


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


def _tool_create_file(params: CreateFileParams, ctx: ToolContext) -> dict:
    full, relative = _resolve(ctx, params.path, params.session_id)
    full.parent.mkdir(parents=True, exist_ok=True)
    full.write_text(params.content, encoding="utf-8")
    return {
        "message": f"File created at workspace/{relative}",
        "path": relative,
        "size": full.stat().st_size,
    }


def _tool_create_folder(params: CreateFolderParams, ctx: ToolContext) -> dict:
    full, relative = _resolve(ctx, params.path, params.session_id)
    full.mkdir(parents=True, exist_ok=True)
    return {"message": f"Folder created at workspace/{relative}", "path": relative}


def _tool_read_file(params: ReadFileParams, ctx: ToolContext) -> dict:
    full, relative = _resolve(ctx, params.path, params.session_id)
    content = full.read_text(encoding="utf-8")
    stat = full.stat()
    return {
        "path": relative,
        "content": content,
        "size": stat.st_size,
        "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
    }


def _tool_list_files(params: ListFilesParams, ctx: ToolContext) -> dict:
    _base_dir(ctx, params.session_id).mkdir(parents=True, exist_ok=True)
    full, relative = _resolve(ctx, params.path, params.session_id)
    files: list[dict] = []
    folders: list[dict] = []
    for entry in sorted(full.iterdir(), key=lambda p: p.name):
        stat = entry.stat()
        item = {
            "name": entry.name,
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
        }
        (folders if entry.is_dir() else files).append(item)
    return {
        "path": relative,
        "files": files,
        "folders": folders,
        "total_files": len(files),
        "total_folders": len(folders),
    }


# ---------------------------------------------------------------------------
# Programming
# ---------------------------------------------------------------------------

_EXTENSIONS = {
    "python": "py",
    "javascript": "js",
    "js": "js",
    "typescript": "ts",
    "ts": "ts",
    "html": "html",
    "css": "css",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
}


def _code_template(language: str, description: str, framework: str | None) -> str:
    lang = language.lower()
    if lang == "python" and framework == "flask":
        return (
            f"# Flask application for: {description}\n"
            "from flask import Flask, jsonify\n\n"
            "app = Flask(__name__)\n\n\n"
            "@app.route('/')\n"
            "def home():\n"
            '    return jsonify({"message": "Hello, World!"})\n\n\n'
            "if __name__ == '__main__':\n"
            "    app.run(debug=True)\n"
        )
    if lang == "python":
        return (
            f"# Python script for: {description}\n\n\n"
            "def main():\n"
            f'    """{description}"""\n'
            '    print("Hello, World!")\n\n\n'
            'if __name__ == "__main__":\n'
            "    main()\n"
        )
    if lang in ("javascript", "js"):
        return (
            f"// JavaScript code for: {description}\n\n"
            "function main() {\n"
            "  console.log('Hello, World!');\n"
            "}\n\n"
            "main();\n"
        )
    if lang in ("typescript", "ts"):
        return (
            f"// TypeScript code for: {description}\n\n"
            "interface Data {\n  id: number;\n  name: string;\n}\n\n"
            "function main(): void {\n"
            "  const data: Data = { id: 1, name: 'Hello, World!' };\n"
            "  console.log(data);\n"
            "}\n\n"
            "main();\n"
        )
    if lang == "html":
        return (
            "<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n"
            "    <meta charset=\"UTF-8\">\n"
            f"    <title>{description}</title>\n"
            "</head>\n<body>\n    <h1>Hello, World!</h1>\n</body>\n</html>\n"
        )
    if lang == "css":
        return (
            f"/* CSS for: {description} */\n\n"
            "body {\n    font-family: Arial, sans-serif;\n    margin: 0;\n    padding: 20px;\n}\n"
        )
    return f"// Generated {language} code for: {description}\n"


def _tool_generate_code(params: GenerateCodeParams, ctx: ToolContext) -> dict:
    code = _code_template(params.language, params.description, params.framework)
    extension = _EXTENSIONS.get(params.language.lower(), "txt")
    saved_path = None
    if params.filename:
        full, saved_path = _resolve(ctx, params.filename, params.session_id)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(code, encoding="utf-8")
    return {
        "code": code,
        "language": params.language,
        "framework": params.framework or "none",
        "filename": params.filename or f"generated_{int(time.time())}.{extension}",
        "saved_path": saved_path,
        "size": len(code.encode("utf-8")),
    }


def _tool_execute_python(params: ExecutePythonParams, ctx: ToolContext) -> dict:
    ctx.scripts_dir.mkdir(parents=True, exist_ok=True)
    script = ctx.scripts_dir / f"temp_{uuid.uuid4().hex}.py"
    script.write_text(params.code, encoding="utf-8")
    try:
        completed = subprocess.run(
            [sys.executable, str(script)],
            capture_output=True,
            text=True,
            timeout=ctx.python_timeout,
            cwd=ctx.scripts_dir,
        )
    finally:
        script.unlink(missing_ok=True)

    if completed.returncode != 0:
        stderr = completed.stderr.strip()
        last_line = stderr.splitlines()[-1] if stderr else f"exit code {completed.returncode}"
        raise PythonExecutionError(last_line)
    return {
        "output": completed.stdout,
        "stderr": completed.stderr or None,
        "description": params.description or "Python code execution",
    }


# ---------------------------------------------------------------------------
# Productivity
# ---------------------------------------------------------------------------


def _tool_create_todo(params: CreateTodoParams, ctx: ToolContext) -> dict:
    todo = TodoItem(
        id=f"todo_{uuid.uuid4().hex[:12]}",
        title=params.title,
        description=params.description or "",
        priority=params.priority,
        due_date=params.due_date,
    )
    ctx.todos.add(todo)
    return {"todo": todo.model_dump(), "message": f'Todo created: "{todo.title}"'}


def _tool_list_todos(params: ListTodosParams, ctx: ToolContext) -> dict:
    every = ctx.todos.items()
    selected = every if params.status == "all" else [t for t in every if t.status == params.status]
    return {
        "todos": [t.model_dump() for t in selected],
        "count": len(selected),
        "total_count": len(every),
    }


def _tool_update_todo(params: UpdateTodoParams, ctx: ToolContext) -> dict:
    changes = params.model_dump(exclude={"id"}, exclude_none=True)
    todo = ctx.todos.update(params.id, **changes)
    return {"todo": todo.model_dump(), "message": "Todo updated"}


# ---------------------------------------------------------------------------
# Utility / web
# ---------------------------------------------------------------------------


def _tool_get_current_time(params: GetCurrentTimeParams) -> dict:
    now = datetime.now(ZoneInfo(params.timezone))
    return {
        "timestamp": now.isoformat(),
        "formatted": now.strftime("%Y-%m-%d %H:%M:%S %Z"),
        "timezone": params.timezone,
        "unix": int(now.timestamp()),
        "weekday": now.strftime("%A"),
    }


def _tool_calculate(params: CalculateParams) -> dict:
    result = evaluate(params.expression.replace("×", "*").replace("÷", "/"))
    if not result.ok:
        raise ValueError(f"Cannot evaluate {params.expression!r}: {result.error}")
    return {"expression": params.expression, "value": result.value}


def _tool_search_web(params: SearchWebParams) -> dict:
    from ddgs import DDGS

    # Coerce the generator to a list to ensure actual execution
    hits = list(DDGS().text(params.query, max_results=params.max_results))
    results = [
        {
            "title": hit.get("title", "No Title"),
            "url": hit.get("href", ""),
            "snippet": hit.get("body", ""),
        }
        for hit in hits
    ]
    return {"query": params.query, "results": results, "count": len(results)}


def _tool_format_final_answer(params: FormatFinalAnswerParams) -> dict:
    formatted = f"## {params.title}\n\n{params.answer}" if params.title else params.answer
    return {"formatted_answer": formatted}


# ---------------------------------------------------------------------------
# Browser sessions
# ---------------------------------------------------------------------------


def _tool_start_browser_session(params: SessionParams, ctx: ToolContext) -> dict:
    if ctx.sessions.is_active(params.session_id):
        raise RuntimeError(f"Session {params.session_id} is already active")
    session = ctx.sessions.start(params.session_id)
    return {
        "message": f"Browser session {session.session_id} started ({ctx.automation_mode} mode)",
        "session_id": session.session_id,
        "started_at": session.started_at.isoformat(),
        "mode": ctx.automation_mode,
    }


def _tool_get_browser_session_status(params: SessionParams, ctx: ToolContext) -> dict:
    session = ctx.sessions.status(params.session_id)
    if session is None:
        return {"status": "not_found", "session_id": params.session_id}
    return {
        "status": "active" if session.is_active else "inactive",
        "session_id": session.session_id,
        "started_at": session.started_at.isoformat(),
        "is_active": session.is_active,
    }


def _tool_close_browser_session(params: SessionParams, ctx: ToolContext) -> dict:
    if not ctx.sessions.is_active(params.session_id):
        raise RuntimeError(f"Session {params.session_id} is not active or does not exist")
    session = ctx.sessions.close(params.session_id)
    return {
        "message": f"Browser session {session.session_id} closed",
        "session_id": session.session_id,
        "closed_at": session.closed_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

# name: (description, category, params, handler, needs context)
TOOLS: dict[ToolName, tuple[str, str, type[BaseModel], Any, bool]] = {
    ToolName.CREATE_FILE: ("Create a file with the given content in the workspace", "filesystem", CreateFileParams, _tool_create_file, True),
    ToolName.CREATE_FOLDER: ("Create a folder in the workspace", "filesystem", CreateFolderParams, _tool_create_folder, True),
    ToolName.READ_FILE: ("Read a file from the workspace", "filesystem", ReadFileParams, _tool_read_file, True),
    ToolName.LIST_FILES: ("List files and folders in a workspace directory", "filesystem", ListFilesParams, _tool_list_files, True),
    ToolName.GENERATE_CODE: ("Generate starter code for a language and description", "programming", GenerateCodeParams, _tool_generate_code, True),
    ToolName.EXECUTE_PYTHON: ("Execute Python code in a subprocess with a timeout", "programming", ExecutePythonParams, _tool_execute_python, True),
    ToolName.CREATE_TODO: ("Create a todo with title, description, priority and due date", "productivity", CreateTodoParams, _tool_create_todo, True),
    ToolName.LIST_TODOS: ("List todos, optionally filtered by status", "productivity", ListTodosParams, _tool_list_todos, True),
    ToolName.UPDATE_TODO: ("Update an existing todo", "productivity", UpdateTodoParams, _tool_update_todo, True),
    ToolName.GET_CURRENT_TIME: ("Get the current date and time", "utility", GetCurrentTimeParams, _tool_get_current_time, False),
    ToolName.CALCULATE: ("Evaluate an arithmetic expression", "utility", CalculateParams, _tool_calculate, False),
    ToolName.SEARCH_WEB: ("Search the web for information", "web", SearchWebParams, _tool_search_web, False),
    ToolName.FORMAT_FINAL_ANSWER: ("Format the final answer for the user. Always enabled.", "utility", FormatFinalAnswerParams, _tool_format_final_answer, False),
    ToolName.START_BROWSER_SESSION: ("Start a browser session so browser steps can run", "browser", SessionParams, _tool_start_browser_session, True),
    ToolName.GET_BROWSER_SESSION_STATUS: ("Check the status of a browser session", "browser", SessionParams, _tool_get_browser_session_status, True),
    ToolName.CLOSE_BROWSER_SESSION: ("Close an active browser session", "browser", SessionParams, _tool_close_browser_session, True),
}

_TIMEOUTS = {
    ToolName.SEARCH_WEB: SEARCH_TIMEOUT,
}


def build_registry(ctx: ToolContext, registry: ToolRegistry | None = None) -> ToolRegistry:
    """Register every built-in tool, bound to ctx."""
    registry = registry or ToolRegistry()
    for name, (description, category, params, handler, needs_ctx) in TOOLS.items():
        timeout = _TIMEOUTS.get(name)
        if name is ToolName.EXECUTE_PYTHON:
            # Let the subprocess timeout fire before the dispatcher deadline.
            timeout = ctx.python_timeout + 5
        registry.register(
            Tool(
                name=name.value,
                description=description,
                category=category,
                params=params,
                handler=partial(handler, ctx=ctx) if needs_ctx else handler,
                timeout=timeout,
                always_enabled=name is ToolName.FORMAT_FINAL_ANSWER,
            )
        )
    return registry
