import pytest

from src.codeforge.domain.chat_models import ChatRequest
from src.codeforge.infrastructure.record_store import InMemoryRecordStore
from src.codeforge.services.conversation import (
    ProjectForbidden,
    ProjectNotFound,
    prepare_turn,
    project_title,
)


def test_project_title_truncation():
    assert project_title("short") == "short"
    assert project_title("x" * 50) == "x" * 50
    long_title = project_title("y" * 51)
    assert long_title == "y" * 47 + "..."
    assert project_title("   ") == "Untitled project"


def test_new_project_created_without_id():
    store = InMemoryRecordStore()
    prepared = prepare_turn(store, ChatRequest(message="build a blog", model="claude"), "u1")
    assert prepared.created_project
    assert prepared.history == []
    assert prepared.project.selected_model == "claude"
    [msg] = store.list_messages(prepared.project.project_id)
    assert (msg.role, msg.content) == ("user", "build a blog")


def test_existing_project_history_and_retry():
    store = InMemoryRecordStore()
    project = store.create_project("u1", "p")
    req = ChatRequest(projectId=project.project_id, message="add a footer")
    prepare_turn(store, req, "u1")
    store.add_message(project.project_id, "assistant", "added")
    again = prepare_turn(store, req, "u1")
    # a retried build after an answer is a new turn
    assert [m.content for m in store.list_messages(project.project_id)] == ["add a footer", "added", "add a footer"]
    assert again.history == [
        {"role": "user", "content": "add a footer"},
        {"role": "assistant", "content": "added"},
    ]


def test_ownership_errors():
    store = InMemoryRecordStore()
    project = store.create_project("owner", "p")
    with pytest.raises(ProjectForbidden):
        prepare_turn(store, ChatRequest(projectId=project.project_id, message="hi"), "intruder")
    with pytest.raises(ProjectNotFound):
        prepare_turn(store, ChatRequest(projectId="missing", message="hi"), "owner")
