import pytest

from agent_loop.todos import TodoItem, TodoStore, parse_markdown, render_markdown


@pytest.fixture
def store(workspace):
    return TodoStore(workspace)


def test_empty_store(store):
    assert store.items() == []
    assert not store.path.exists()


def test_markdown_survives_a_reload(store):
    store.add(TodoItem(id="t1", title="Write report", description="Quarterly numbers", priority="high", due_date="2026-11-01"))
    store.add(TodoItem(id="t2", title="Call Sam"))
    store.update("t2", status="completed")

    reloaded = TodoStore(store.path.parent).items()

    assert [t.model_dump() for t in reloaded] == [
        {
            "id": "t1",
            "title": "Write report",
            "description": "Quarterly numbers",
            "priority": "high",
            "status": "pending",
            "due_date": "2026-11-01",
        },
        {
            "id": "t2",
            "title": "Call Sam",
            "description": "",
            "priority": "medium",
            "status": "completed",
            "due_date": None,
        },
    ]


def test_rendered_file_is_readable(store):
    store.add(TodoItem(id="t1", title="Buy milk"))
    content = store.path.read_text(encoding="utf-8")
    assert content.startswith("# Todo List")
    assert "- **Pending:** 1" in content
    assert "### Buy milk (ID: t1)" in content
    assert "- [ ] Buy milk" in content


def test_checkbox_inside_description_is_not_status():
    content = render_markdown(
        [TodoItem(id="t1", title="Plan", description="Steps:\n- [x] draft\n- [ ] review")]
    )
    [todo] = parse_markdown(content)
    assert todo.status == "pending"
    assert todo.description == "Steps:\n- [x] draft\n- [ ] review"


def test_status_filter(store):
    store.add(TodoItem(id="a", title="A"))
    store.add(TodoItem(id="b", title="B", status="completed"))
    assert [t.id for t in store.items("pending")] == ["a"]
    assert [t.id for t in store.items("completed")] == ["b"]
    assert len(store.items()) == 2


def test_duplicate_id_is_rejected(store):
    store.add(TodoItem(id="a", title="A"))
    with pytest.raises(ValueError, match="already exists"):
        store.add(TodoItem(id="a", title="Again"))


def test_update_unknown_id(store):
    with pytest.raises(LookupError, match="not found"):
        store.update("missing", status="completed")


def test_empty_list_renders_placeholder():
    assert "## No todos yet" in render_markdown([])
    assert parse_markdown(render_markdown([])) == []
