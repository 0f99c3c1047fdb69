from datetime import timedelta

import pytest

from delaynotify.retry import RetryStrategy


class Flaky:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, value, *, suffix=""):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return value + suffix


def make_strategy(attempts, sleeps, delay=1.0, backoff=3.0):
    return RetryStrategy(
        attempts=attempts,
        delay=timedelta(seconds=delay),
        backoff=backoff,
        sleep=sleeps.append,
    )


def test_success_first_time_does_not_sleep():
    sleeps = []
    func = Flaky(0)
    result = make_strategy(3, sleeps).call(func, "ok", suffix="!")
    assert result == "ok!"
    assert func.calls == 1
    assert sleeps == []


def test_retries_until_success_with_backoff():
    sleeps = []
    func = Flaky(2)
    result = make_strategy(5, sleeps).call(func, "done")
    assert result == "done"
    assert func.calls == 3
    assert len(sleeps) == 2
    assert sleeps[0] == 1.0
    assert sleeps[1] / sleeps[0] == pytest.approx(3.0)


def test_raises_last_error_after_all_attempts():
    sleeps = []
    func = Flaky(10)
    with pytest.raises(ConnectionError, match="failure 4"):
        make_strategy(4, sleeps).call(func, "x")
    assert func.calls == 4
    assert len(sleeps) == 3


def test_zero_attempts_still_calls_once():
    sleeps = []
    func = Flaky(0)
    assert make_strategy(0, sleeps).call(func, "once") == "once"
    assert func.calls == 1


def test_strategies_compare_by_settings():
    first = RetryStrategy(attempts=3, delay=timedelta(milliseconds=100), backoff=2)
    second = RetryStrategy(sleep=lambda _: None)
    assert first == second