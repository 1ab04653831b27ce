"""
Group and agency ledgers.

Amounts are stored unsigned with an income/expense type; totals are computed
with ``Decimal`` so balances never pick up float rounding.
"""
