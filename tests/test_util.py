import pytest

from taskconsole.util import percent_of, percentage


def test_percentage_of_whole_is_hundred():
    assert percentage(40.0, 40.0) == 100.0


def test_percentage_of_nothing_is_zero():
    assert percentage(10.0, 0.0) == 0.0


def test_percentage_rejects_amount_above_total():
    with pytest.raises(ValueError):
        percentage(1.0, 2.0)


def test_percentage_zero_total_is_nan():
    assert str(percentage(0.0, 0.0)) == "nan"


def test_percent_of_int_truncates():
    assert percent_of(1, 3) == 33
    assert isinstance(percent_of(1, 3), int)


def test_percent_of_int_zero_total_is_zero():
    assert percent_of(0, 0) == 0


def test_percent_of_float_keeps_fraction():
    result = percent_of(1.0, 3.0)
    assert isinstance(result, float)
    assert 33.0 < result < 34.0


def test_percent_of_matches_percentage_for_floats():
    assert percent_of(3.0, 12.0) == percentage(12.0, 3.0)


def test_percent_of_rejects_amount_above_total():
    with pytest.raises(ValueError):
        percent_of(5, 4)