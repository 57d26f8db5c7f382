"""
Hypothesis properties for upkeep_funding.domain.policy.

Boundaries fuzzed here:
- top_up_amount: never negative, never above the cap, never past the target
- an uncapped top-up always clears the underfunded threshold
- scan_indices: bounded, distinct, starting at the signal position
- successive signal values together visit every watch-list position
"""

from decimal import Decimal

from hypothesis import assume, given
from hypothesis import strategies as st

from upkeep_funding.domain.policy import is_underfunded, scan_indices, top_up_amount

HUNDRED = Decimal("100")

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000"),
    places=9,
    allow_nan=False,
    allow_infinity=False,
)
percentages = st.integers(min_value=100, max_value=1000)


@given(
    balance=amounts,
    min_balance=amounts,
    target_percentage=percentages,
    cap=amounts.filter(lambda a: a > 0),
)
def test_top_up_is_bounded(balance, min_balance, target_percentage, cap):
    amount = top_up_amount(balance, min_balance, target_percentage, cap)
    target = min_balance * Decimal(target_percentage) / HUNDRED

    assert Decimal("0") <= amount <= cap
    if balance < target:
        assert balance + amount <= target


@given(
    balance=amounts,
    min_balance=amounts,
    min_percentage=percentages,
    extra=st.integers(min_value=1, max_value=500),
)
def test_uncapped_top_up_clears_threshold(balance, min_balance, min_percentage, extra):
    target_percentage = min_percentage + extra
    assume(is_underfunded(balance, min_balance, min_percentage))

    cap = min_balance * Decimal(target_percentage) / HUNDRED
    amount = top_up_amount(balance, min_balance, target_percentage, cap)

    assert not is_underfunded(balance + amount, min_balance, min_percentage)


@given(
    start=st.integers(min_value=0, max_value=10**12),
    length=st.integers(min_value=1, max_value=200),
    max_iterations=st.integers(min_value=1, max_value=300),
)
def test_scan_is_bounded_and_distinct(start, length, max_iterations):
    visited = scan_indices(start, length, max_iterations)

    assert len(visited) == min(length, max_iterations)
    assert len(set(visited)) == len(visited)
    assert visited[0] == start % length
    assert all(0 <= i < length for i in visited)


@given(
    length=st.integers(min_value=2, max_value=200),
    data=st.data(),
)
def test_successive_signals_cover_the_watch_list(length, data):
    window = data.draw(st.integers(min_value=1, max_value=length - 1))

    covered = set()
    for signal in range(length):
        covered.update(scan_indices(signal, length, window))

    assert covered == set(range(length))
