import logging

from chatbroker.sessions import SessionKey, chat_id_from_session, join_session_id


def test_simple_round_trip():
    session_id = join_session_id("u1", "c1")
    assert session_id == "u1_c1"
    assert chat_id_from_session(session_id) == "c1"


def test_chat_id_may_contain_separator():
    assert chat_id_from_session(join_session_id("u1", "c2_x")) == "c2_x"


def test_user_id_with_separator_splits_on_first_separator(caplog):
    with caplog.at_level(logging.WARNING, logger="chatbroker.sessions"):
        session_id = join_session_id("u_1", "c2_x")

    assert session_id == "u_1_c2_x"
    # documented ambiguity: everything after the first "_" is taken as the chat id
    assert chat_id_from_session(session_id) == "1_c2_x"
    assert "will not round-trip" in caplog.text


def test_session_without_separator_has_no_chat():
    assert chat_id_from_session("anonymous") == ""


def test_session_key():
    key = SessionKey("u1", "c2_x")
    assert key.session_id == "u1_c2_x"
    assert SessionKey.parse("u1_c2_x") == key
    assert SessionKey.parse("u_1_c2_x") == SessionKey("u", "1_c2_x")
