from locator.utils.time import days, minutes, seconds_until, utc_dt

def test_unit_helpers():
    assert days(1) == 86_400.0
    assert minutes(5) == 300.0

def test_seconds_until_clamps():
    assert seconds_until(110.0, now=100.0) == 10.0
    assert seconds_until(90.0, now=100.0) == 0.0

def test_utc_dt_is_aware():
    assert utc_dt(0).tzinfo is not None
    assert utc_dt(0).year == 1970
