"""
结构化输出解析测试
"""

import pytest

from infrastructure.exceptions import MalformedStructuredOutput, RetryableError
from nlp.schemas import GuardJudgment, OrderIntentPayload, RoutingDecision
from nlp.structured_output import parse_structured


class TestParseStructured:
    """parse_structured 测试"""

    def test_valid_json(self):
        result = parse_structured(
            '{"reasoning": "咨询菜单", "decision": "allowed", "message": ""}',
            GuardJudgment
        )
        assert result.decision == "allowed"

    def test_code_fence_is_stripped(self):
        response = '```json\n{"reasoning": "r", "agent": "details", "category": null}\n```'
        result = parse_structured(response, RoutingDecision)
        assert result.agent == "details"
        assert result.category is None

    def test_json_embedded_in_text(self):
        response = '好的，结果如下：{"reasoning": "r", "agent": "recommendation"} 以上。'
        result = parse_structured(response, RoutingDecision)
        assert result.agent == "recommendation"

    def test_missing_required_field(self):
        with pytest.raises(MalformedStructuredOutput) as exc_info:
            parse_structured('{"reasoning": "r", "message": ""}', GuardJudgment)
        assert "decision" in exc_info.value.message

    def test_enum_out_of_range(self):
        with pytest.raises(MalformedStructuredOutput):
            parse_structured('{"reasoning": "r", "decision": "maybe", "message": ""}', GuardJudgment)

    def test_invalid_json(self):
        with pytest.raises(MalformedStructuredOutput):
            parse_structured('{"reasoning": "r", "decision": ', GuardJudgment)

    def test_empty_response(self):
        with pytest.raises(MalformedStructuredOutput):
            parse_structured("   ", GuardJudgment)

    def test_top_level_array_rejected(self):
        with pytest.raises(MalformedStructuredOutput):
            parse_structured('[{"intent": "add"}]', OrderIntentPayload)

    def test_malformed_output_is_retryable(self):
        with pytest.raises(RetryableError):
            parse_structured("not json", GuardJudgment)

    def test_raw_response_kept(self):
        with pytest.raises(MalformedStructuredOutput) as exc_info:
            parse_structured("not json", GuardJudgment)
        assert exc_info.value.raw == "not json"


class TestSchemas:
    """Schema 字段规则测试"""

    def test_blank_category_becomes_none(self):
        result = RoutingDecision(reasoning="r", agent="details", category="  ")
        assert result.category is None

    def test_order_items_default_empty(self):
        result = parse_structured('{"intent": "confirm"}', OrderIntentPayload)
        assert result.items == []

    def test_recommendation_index_must_be_positive(self):
        with pytest.raises(MalformedStructuredOutput):
            parse_structured(
                '{"intent": "add", "items": [{"recommendation_index": 0}]}',
                OrderIntentPayload
            )

    def test_schema_title_matches_model_name(self):
        assert GuardJudgment.model_json_schema()["title"] == "GuardJudgment"
        assert set(GuardJudgment.model_json_schema()["required"]) == {"reasoning", "decision", "message"}
