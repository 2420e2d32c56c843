import threading
import pytest
from promptlab.core.errors import SessionNotFoundError, SessionNotOwnedError
from promptlab.models.session import ConversationSession
from promptlab.services.session_registry import SessionRegistry

def test_create_session_has_root():
    registry = SessionRegistry(multi_session=True)
    session = registry.create_session("alice")
    assert session.current_node_id == "1"
    assert session.tree.root.id == "1"
    assert session.tree.root.question.question == "start"
    assert registry.get_user_session_ids("alice") == [session.session_id]

def test_node_ids_monotonic():
    session = ConversationSession("alice", "s1")
    ids = [session.next_node_id() for _ in range(5)]
    assert ids == ["1", "2", "3", "4", "5"]

def test_node_ids_unique_under_threads():
    session = ConversationSession("alice", "s1")
    results = []
    results_lock = threading.Lock()

    def worker():
        local = [session.next_node_id() for _ in range(200)]
        with results_lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1600
    assert len(set(results)) == 1600
    assert session.node_id_counter == 1600

def test_get_session_not_found_vs_not_owned():
    registry = SessionRegistry()
    session = registry.create_session("alice")

    with pytest.raises(SessionNotFoundError):
        registry.get_session("alice", "missing")
    with pytest.raises(SessionNotOwnedError):
        registry.get_session("bob", session.session_id)
    assert registry.get_session("alice", session.session_id) is session

def test_single_session_mode_replaces_old():
    registry = SessionRegistry(multi_session=False)
    first = registry.create_session("alice")
    second = registry.create_session("alice")
    assert registry.get_user_session_ids("alice") == [second.session_id]
    assert first.tree is None
    with pytest.raises(SessionNotFoundError):
        registry.get_session("alice", first.session_id)

def test_max_sessions_evicts_oldest():
    registry = SessionRegistry(multi_session=True, max_sessions_per_user=2)
    s1 = registry.create_session("alice")
    s2 = registry.create_session("alice")
    s3 = registry.create_session("alice")
    assert registry.get_user_session_ids("alice") == [s2.session_id, s3.session_id]
    assert not registry.user_owns_session("alice", s1.session_id)
    assert registry.get_user_latest_session("alice") is s3

def test_remove_session_frees_tree():
    registry = SessionRegistry()
    session = registry.create_session("alice")
    assert registry.remove_session(session.session_id) is True
    assert session.tree is None
    assert session.current_node_id is None
    assert registry.remove_session(session.session_id) is False
    assert registry.get_user_session_ids("alice") == []

def test_remove_all_and_stats():
    registry = SessionRegistry()
    registry.create_session("alice")
    registry.create_session("alice")
    registry.create_session("bob")

    stats = registry.get_session_stats()
    assert stats["totalSessions"] == 3
    assert stats["activeUsers"] == 2

    assert registry.remove_all_user_sessions("alice") == 2
    assert registry.get_session_stats()["totalSessions"] == 1

def test_validate_node_ownership():
    registry = SessionRegistry()
    session = registry.create_session("alice")
    assert registry.validate_node_ownership(session.session_id, "1")
    assert not registry.validate_node_ownership(session.session_id, "2")
    assert not registry.validate_node_ownership("missing", "1")

def test_get_session_by_id():
    registry = SessionRegistry()
    session = registry.create_session("alice")
    assert registry.get_session_by_id(session.session_id) is session
    with pytest.raises(SessionNotFoundError):
        registry.get_session_by_id("missing")
