from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
# Numeric(12, 2) and Numeric(14, 2) column limits.
MAX_UNIT_AMOUNT = Decimal("9999999999.99")
MAX_LINE_TOTAL = Decimal("999999999999.99")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def line_total(unit_cost: Decimal, quantity: int) -> Decimal:
    # unit_cost is rounded to cents first so the stored unit_cost * quantity == total_cost.
    return to_money(to_money(unit_cost) * quantity)
