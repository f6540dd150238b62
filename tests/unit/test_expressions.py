"""Unit tests for the condition expression evaluator"""
import pytest

from shared.expressions import (
    EvaluationContext,
    MISSING,
    evaluate,
    resolve_field,
    to_number,
    to_text,
)


@pytest.fixture
def context() -> EvaluationContext:
    return EvaluationContext(tenant_id="tenant-1",
                             job_id="job-1",
                             trigger_payload={
                                 "status": "active",
                                 "score": 42,
                                 "ratio": 3.0,
                                 "vip": True,
                                 "note": "",
                                 "source": None,
                                 "address": {
                                     "city": "Lisbon"
                                 },
                             },
                             contact={
                                 "email": "ada@gmail.com",
                                 "phone": None,
                                 "tags": ["new", "lead"],
                             },
                             opportunity={"value": 5000})


@pytest.mark.unit
class TestResolveField:

    def test_nested_path(self, context: EvaluationContext) -> None:
        assert resolve_field("triggerPayload.address.city", context) == "Lisbon"

    def test_missing_path(self, context: EvaluationContext) -> None:
        assert resolve_field("triggerPayload.address.zip", context) is MISSING
        assert resolve_field("triggerPayload.status.length",
                             context) is MISSING

    def test_list_position(self, context: EvaluationContext) -> None:
        assert resolve_field("contact.tags.0", context) == "new"
        assert resolve_field("contact.tags.5", context) is MISSING
        assert resolve_field("contact.tags.first", context) is MISSING
        assert evaluate("contact.tags.1 equals lead", context) is True

    def test_unknown_root(self, context: EvaluationContext) -> None:
        assert resolve_field("account.name", context) is MISSING

    def test_plain_mapping_context(self) -> None:
        data = {"triggerPayload": {"status": "lead"}}

        assert resolve_field("triggerPayload.status", data) == "lead"
        assert resolve_field("contact.email", data) is MISSING


@pytest.mark.unit
class TestCoercion:

    @pytest.mark.parametrize("value,expected", [
        (MISSING, "undefined"),
        (None, "null"),
        (True, "true"),
        (False, "false"),
        (3.0, "3"),
        (2.5, "2.5"),
        (7, "7"),
        (["a", None, 1], "a,,1"),
        ({"a": 1}, "[object Object]"),
    ])
    def test_to_text(self, value, expected) -> None:
        assert to_text(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("10", 10.0),
        (" 2.5 ", 2.5),
        (3, 3.0),
        ("", None),
        ("abc", None),
        ("1e3", 1000.0),
        (".5", 0.5),
        ("0x10", 16.0),
        ("-Infinity", float("-inf")),
        ("1_000", None),
        ("inf", None),
        ("infinity", None),
        ("-0x10", None),
        (True, None),
        (None, None),
    ])
    def test_to_number(self, value, expected) -> None:
        assert to_number(value) == expected


@pytest.mark.unit
class TestEvaluate:

    @pytest.mark.parametrize("expression,expected", [
        ("triggerPayload.status equals active", True),
        ("triggerPayload.status equals 'active'", True),
        ('triggerPayload.status equals "active"', True),
        ("triggerPayload.status not_equals active", False),
        ("triggerPayload.score equals 42", True),
        ("triggerPayload.ratio equals 3", True),
        ("triggerPayload.vip equals true", True),
        ("triggerPayload.source equals null", True),
        ("triggerPayload.missing equals undefined", True),
        ("triggerPayload.missing not_equals active", True),
    ])
    def test_equality(self, context: EvaluationContext, expression: str,
                      expected: bool) -> None:
        assert evaluate(expression, context) is expected

    @pytest.mark.parametrize("expression,expected", [
        ("contact.email contains '@gmail.com'", True),
        ("contact.email contains '@yahoo.com'", False),
        ("contact.email not_contains '@yahoo.com'", True),
        # Only string values can contain text
        ("contact.tags contains new", False),
        ("contact.tags not_contains new", False),
        ("triggerPayload.score contains 4", False),
    ])
    def test_contains(self, context: EvaluationContext, expression: str,
                      expected: bool) -> None:
        assert evaluate(expression, context) is expected

    @pytest.mark.parametrize("expression,expected", [
        ("opportunity.value gt 1000", True),
        ("opportunity.value lt 1000", False),
        ("triggerPayload.score gt '41'", True),
        ("triggerPayload.status gt 1", False),
        ("opportunity.value gt lots", False),
        ("opportunity.missing lt 1", False),
    ])
    def test_numeric(self, context: EvaluationContext, expression: str,
                     expected: bool) -> None:
        assert evaluate(expression, context) is expected

    @pytest.mark.parametrize("expression,expected", [
        ("triggerPayload.note is_empty", True),
        ("triggerPayload.source is_empty", True),
        ("triggerPayload.missing is_empty", True),
        ("triggerPayload.status is_empty", False),
        ("contact.phone is_not_empty", False),
        ("contact.email is_not_empty", True),
    ])
    def test_emptiness(self, context: EvaluationContext, expression: str,
                       expected: bool) -> None:
        assert evaluate(expression, context) is expected

    def test_unknown_root_is_absent(self, context: EvaluationContext) -> None:
        assert evaluate("account.name equals acme", context) is False
        assert evaluate("account.name is_empty", context) is True

    @pytest.mark.parametrize("expression", [
        "",
        "triggerPayload.status",
        "triggerPayload.status matches active",
        "equals",
    ])
    def test_malformed_is_false(self, context: EvaluationContext,
                                expression: str) -> None:
        assert evaluate(expression, context) is False

    def test_non_string_expression_is_false(
            self, context: EvaluationContext) -> None:
        """Test invalid input yields False instead of raising"""
        assert evaluate(None, context) is False

    def test_first_operator_wins(self) -> None:
        """Test operand text with an operator token splits at the first one"""
        data = {"triggerPayload": {"title": "a contains b"}}

        assert evaluate("triggerPayload.title equals a contains b",
                        data) is True
        assert evaluate("triggerPayload.title contains a equals b",
                        data) is False

    def test_deterministic(self, context: EvaluationContext) -> None:
        expression = "contact.email contains '@gmail.com'"

        results = {evaluate(expression, context) for _ in range(10)}

        assert results == {True}
        assert context.contact["email"] == "ada@gmail.com"
