import logging

import pytest

from cephnode.loglevel import get_log_level, set_log_level


@pytest.fixture(autouse=True)
def restore():
    before = get_log_level()
    logger_level = logging.getLogger("cephnode").level
    yield
    set_log_level(str(before))
    logging.getLogger("cephnode").setLevel(logger_level)


@pytest.mark.parametrize("value", ["0", "1", "2", "3", "4", "5", "6"])
def test_numeric_round_trip(value):
    set_log_level(value)
    assert get_log_level() == int(value)


@pytest.mark.parametrize(
    "name, number",
    [("panic", "0"), ("fatal", "1"), ("error", "2"), ("warn", "3"),
     ("info", "4"), ("debug", "5"), ("trace", "6")],
)
def test_names_match_numbers(name, number):
    set_log_level(name)
    by_name = get_log_level()
    set_log_level(number)
    assert by_name == get_log_level()


def test_names_are_case_insensitive():
    set_log_level("DEBUG")
    upper = get_log_level()
    set_log_level("debug")
    assert upper == get_log_level()


def test_warning_alias():
    set_log_level("warning")
    alias = get_log_level()
    set_log_level("warn")
    assert alias == get_log_level()


def test_debug_applies_to_package_logger():
    set_log_level("debug")
    assert get_log_level() == 5
    assert logging.getLogger("cephnode").level == logging.DEBUG
    set_log_level("error")
    assert get_log_level() == 2
    assert logging.getLogger("cephnode").level == logging.ERROR


@pytest.mark.parametrize("value", ["7", "-1"])
def test_out_of_range_rejected(value):
    set_log_level("info")
    with pytest.raises(ValueError, match="invalid log level"):
        set_log_level(value)
    set_log_level("4")
    assert get_log_level() == int("4")


@pytest.mark.parametrize("value", ["verbose", "", "1.5"])
def test_garbage_rejected(value):
    with pytest.raises(ValueError):
        set_log_level(value)