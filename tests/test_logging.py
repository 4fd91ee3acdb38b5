import pytest

from spillfs.logging import LogLevel, log, log_info, log_warn, set_logger_function


@pytest.fixture(autouse=True)
def _reset_logger():
    set_logger_function(None)
    yield
    set_logger_function(None)


def test_callback_receives_info_messages():
    received = []
    set_logger_function(lambda level, message: received.append((level, message)))
    log_info("hello")
    assert received == [(LogLevel.INFO, "hello")]


def test_callback_receives_warning_messages():
    received = []
    set_logger_function(lambda level, message: received.append((level, message)))
    log_warn("careful")
    assert received == [(LogLevel.WARNING, "careful")]


def test_log_with_explicit_level():
    received = []
    set_logger_function(lambda level, message: received.append((level, message)))
    log(LogLevel.ERROR, "broken")
    assert received == [(LogLevel.ERROR, "broken")]


def test_default_prints_to_stdout(capsys):
    log_info("to the console")
    assert capsys.readouterr().out == "to the console\n"


def test_callback_suppresses_printing(capsys):
    received = []
    set_logger_function(lambda level, message: received.append(message))
    log_info("captured")
    assert capsys.readouterr().out == ""
    assert received == ["captured"]


def test_replacing_callback_uses_latest():
    first, second = [], []
    set_logger_function(lambda level, message: first.append(message))
    set_logger_function(lambda level, message: second.append(message))
    log_info("x")
    assert first == []
    assert second == ["x"]