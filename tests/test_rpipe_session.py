import pytest
from rpipe.rpipe_session import Session, SessionRegistry
from rpipe.rpipe_settings import OpenOptions, HaltPolicy
from rpipe.rpipe_transcript import Transcript
from rpipe.rpipe_datatypes import GeneratedAlias, SessionOpenError, UnknownSessionAlias


def make_session(alias, **opts):
    return Session(alias, streams=None, options=OpenOptions(**opts), interactive=False,
                   transcript=Transcript(None, "none"), version=(4, 3, 1))


def test_generated_aliases_are_distinct():
    registry = SessionRegistry()
    first = registry.reserve()
    second = registry.reserve()
    assert first != second
    assert isinstance(first, GeneratedAlias)
    assert str(first) == "$rsalias(1)"
    assert str(second) == "$rsalias(2)"


def test_generated_alias_reused_after_release():
    registry = SessionRegistry()
    first = registry.reserve()
    registry.release(first)
    assert registry.reserve() == first


def test_duplicate_alias_rejected():
    registry = SessionRegistry()
    registry.add(make_session("main"))
    with pytest.raises(SessionOpenError):
        registry.reserve("main")
    with pytest.raises(SessionOpenError):
        registry.add(make_session("main"))


def test_default_is_head_unless_tail_requested():
    registry = SessionRegistry()
    registry.add(make_session("a"))
    registry.add(make_session("b"))
    registry.add(make_session("z"), at_tail=True)
    assert registry.aliases() == ["b", "a", "z"]
    assert registry.default().alias == "b"
    assert registry.resolve().alias == "b"
    assert registry.resolve("z").alias == "z"


def test_remove_and_unknown_alias():
    registry = SessionRegistry()
    registry.add(make_session("a"))
    assert registry.remove("a").alias == "a"
    assert "a" not in registry
    with pytest.raises(UnknownSessionAlias):
        registry.remove("a")
    with pytest.raises(UnknownSessionAlias):
        registry.get("a")
    with pytest.raises(UnknownSessionAlias):
        registry.default()


def test_pop_all_empties_registry():
    registry = SessionRegistry()
    registry.add(make_session("a"))
    registry.add(make_session("b"))
    popped = registry.pop_all()
    assert [s.alias for s in popped] == ["b", "a"]
    assert len(registry) == 0


def test_history_most_recent_first():
    session = make_session("a")
    session.record_history("x<-1")
    session.record_history("y<-2")
    assert session.history == ["y<-2", "x<-1"]


def test_history_off():
    session = make_session("a", history=False)
    session.record_history("x<-1")
    assert session.history is None


def test_session_data():
    session = make_session("a", at_r_halt=HaltPolicy(HaltPolicy.RESTART))
    assert session.data("interactive") is False
    assert session.data("version") == (4, 3, 1)
    assert session.data("at_r_halt").kind == "restart"
    assert session.data("copy_this") == "none"
    assert session.data("opts") is session.options
    with pytest.raises(KeyError):
        session.data("colour")
