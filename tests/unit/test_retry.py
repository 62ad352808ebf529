import pytest

from contribclub.api import RetryPolicy


class Flaky:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, *args):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_retries_pending_results_until_ready():
    fn = Flaky([None, None, [1, 2, 3]])
    policy = RetryPolicy.fixed(5, 0, retry_if=lambda r: r is None)
    assert await policy.call(fn) == [1, 2, 3]
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_returns_last_pending_result_when_attempts_run_out():
    fn = Flaky([None])
    policy = RetryPolicy.fixed(3, 0, retry_if=lambda r: r is None)
    assert await policy.call(fn) is None
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_retries_listed_exceptions_then_reraises():
    fn = Flaky([ConnectionError("boom")])
    policy = RetryPolicy.fixed(2, 0, retry_on=(ConnectionError,))
    with pytest.raises(ConnectionError):
        await policy.call(fn)
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_unlisted_exceptions_are_not_retried():
    fn = Flaky([KeyError("nope")])
    policy = RetryPolicy.fixed(4, 0, retry_on=(ConnectionError,))
    with pytest.raises(KeyError):
        await policy.call(fn)
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_passes_arguments_through():
    async def add(a, b, *, c=0):
        return a + b + c

    assert await RetryPolicy.fixed(1, 0).call(add, 1, 2, c=3) == 6
