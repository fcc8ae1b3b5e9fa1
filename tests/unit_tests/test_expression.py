import numpy as np
import pytest

from alphaplex.exceptions import SchemaError
from alphaplex.quant.expression import (
    AliasRef,
    BinaryOp,
    Constant,
    Function,
    parse_reference,
)

VALUES = {
    "R1": np.array([100.0, 200.0, np.nan]),
    "R2": np.array([300.0, 200.0, 100.0]),
    "126C": np.array([10.0, 20.0, 30.0]),
}


def test_parse_single_alias():
    assert parse_reference("R1") == AliasRef("R1")


def test_parse_constant():
    expression = parse_reference("1")

    assert expression == Constant(1.0)
    assert expression.aliases() == set()
    assert expression.evaluate(VALUES, 3).tolist() == [1.0, 1.0, 1.0]


def test_parse_mean():
    expression = parse_reference("mean(R1, R2)")

    assert expression == Function("mean", (AliasRef("R1"), AliasRef("R2")))
    assert expression.aliases() == {"R1", "R2"}
    assert expression.evaluate(VALUES, 3)[:2].tolist() == [200.0, 200.0]
    # a missing channel makes the reference missing
    assert np.isnan(expression.evaluate(VALUES, 3)[2])


def test_parse_arithmetic_average():
    expression = parse_reference("(R1 + R2) / 2")

    assert expression == BinaryOp(
        "/", BinaryOp("+", AliasRef("R1"), AliasRef("R2")), Constant(2.0)
    )
    assert expression.evaluate(VALUES, 3)[:2].tolist() == [200.0, 200.0]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1 + 2 * 3", 7.0),
        ("(1 + 2) * 3", 9.0),
        ("8 / 4 / 2", 1.0),
        ("10 - 2 - 3", 5.0),
        ("-2 + 5", 3.0),
        ("sum(1, 2, 3)", 6.0),
        ("median(1, 5, 3)", 3.0),
        ("2.5e1", 25.0),
        ("5e-1 * 4", 2.0),
    ],
)
def test_evaluate_precedence(text, expected):
    assert parse_reference(text).evaluate({}, 1).tolist() == [expected]


def test_quoted_and_numeric_aliases():
    assert parse_reference("`126C`") == AliasRef("126C")
    assert parse_reference("126C").aliases() == {"126C"}
    assert parse_reference("R1 / `126C`").evaluate(VALUES, 3)[:2].tolist() == [10.0, 10.0]
    assert parse_reference("mean(`R 1`, Ion_126.128, in)").aliases() == {"R 1", "Ion_126.128", "in"}


def test_division_by_zero_is_not_an_error():
    result = parse_reference("R1 / 0").evaluate(VALUES, 3)

    assert np.isinf(result[0])


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "R1 +",
        "(R1 + R2",
        "R1 R2",
        "max(R1, R2)",
        "mean()",
        "R1 $ R2",
        "R1)",
        "R1 ** 2",
        "R1 < R2",
        "R1[0]",
        "'R1'",
    ],
)
def test_malformed_expression_raises(text):
    with pytest.raises(SchemaError):
        parse_reference(text)
