import pytest

from rpclab.calc import add, main, parse_int, subtract


@pytest.mark.parametrize("x, y", [(0, 0), (10, -4), (-123, 456), (2**30, 2**30 - 1)])
def test_subtract_undoes_add(x, y):
    assert subtract(add(x, y), y) == x


@pytest.mark.parametrize("x, y", [(3, 9), (-50, 7), (1000, 1000)])
def test_add_is_commutative(x, y):
    assert add(x, y) == add(y, x)


def test_add_wraps_like_c_int():
    assert add(2**31 - 1, 1) == -(2**31)


def test_subtract_wraps_like_c_int():
    assert subtract(-(2**31), 1) == 2**31 - 1


def test_subtract_of_self_is_zero():
    assert subtract(77, 77) == add(0, 0)


@pytest.mark.parametrize("text, expected", [("42abc", 42), ("  -7", -7), ("+15", 15)])
def test_parse_int_reads_leading_number(text, expected):
    assert parse_int(text) == expected


def test_parse_int_without_digits_is_zero():
    assert parse_int("abc") == 0


def test_parse_int_wraps_large_values():
    assert parse_int(str(2**32 + 5)) == 5


def test_main_prints_sum_and_difference(capsys):
    assert main(["12", "30"]) == 0
    out = capsys.readouterr().out
    assert out.splitlines() == [
        f"12 + 30 = {add(12, 30)}",
        f"12 - 30 = {subtract(12, 30)}",
    ]


def test_main_usage(capsys):
    assert main(["1"]) == 0
    captured = capsys.readouterr()
    assert captured.err.startswith("Usage: simp num1 num")
    assert captured.out == ""