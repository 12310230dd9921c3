"""
会话与订单数据模型测试
"""

import dataclasses

import pytest

from core.types import OrderEvent, OrderState, Role
from infrastructure.exceptions import InvalidOrderStateError
from models.catalog import AssociationRule, AssociationRuleTable
from models.order import CartLine, ORDER_TRANSITIONS, can_transition, next_order_state
from models.session import AgentMemory, Session


class TestCartLine:
    """购物车行测试"""

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            CartLine("latte", "拿铁", 32.0, quantity=0)

    def test_subtotal(self):
        assert CartLine("latte", "拿铁", 32.0, quantity=3).subtotal == 96.0

    def test_merge_modifiers_keeps_order_without_duplicates(self):
        line = CartLine("latte", "拿铁", 32.0, modifiers=["大杯"])
        line.merge_modifiers(["燕麦奶", "大杯", ""])
        assert line.modifiers == ["大杯", "燕麦奶"]
        assert line.to_string() == "拿铁 x1（大杯、燕麦奶）"


class TestAgentMemoryCart:
    """购物车操作测试"""

    @pytest.fixture
    def memory(self):
        return AgentMemory()

    def test_same_product_merges_into_one_line(self, memory):
        memory.upsert_line("latte", "拿铁", 32.0, 2)
        memory.upsert_line("latte", "拿铁", 32.0, 2)

        assert len(memory.cart) == 1
        assert memory.cart[0].quantity == 4

    def test_upsert_rejects_non_positive_quantity(self, memory):
        with pytest.raises(ValueError):
            memory.upsert_line("latte", "拿铁", 32.0, 0)

    def test_remove_to_zero_deletes_line(self, memory):
        memory.upsert_line("latte", "拿铁", 32.0, 2)
        assert memory.remove_quantity("latte", 2)
        assert memory.cart == []

    def test_partial_remove(self, memory):
        memory.upsert_line("latte", "拿铁", 32.0, 3)
        memory.remove_quantity("latte", 1)
        assert memory.find_line("latte").quantity == 2

    def test_remove_missing_product(self, memory):
        assert memory.remove_quantity("latte") is False

    def test_set_quantity_zero_deletes_line(self, memory):
        memory.upsert_line("latte", "拿铁", 32.0, 1)
        memory.set_quantity("latte", 0)
        assert memory.cart == []

    def test_cart_total_and_snapshot(self, memory):
        memory.upsert_line("latte", "拿铁", 32.0, 2)
        memory.upsert_line("croissant", "牛角包", 18.0, 1)

        assert memory.cart_total == 82.0
        snapshot = memory.cart_snapshot()
        snapshot[0]["quantity"] = 99
        assert memory.cart[0].quantity == 2


class TestOrderStateMachine:
    """订单状态机测试"""

    @pytest.mark.parametrize("state,event,expected", [
        (OrderState.IDLE, OrderEvent.EDIT, OrderState.COLLECTING),
        (OrderState.COLLECTING, OrderEvent.EDIT, OrderState.COLLECTING),
        (OrderState.COLLECTING, OrderEvent.REQUEST_CONFIRMATION, OrderState.AWAITING_CONFIRMATION),
        (OrderState.AWAITING_CONFIRMATION, OrderEvent.AFFIRM, OrderState.CONFIRMED),
        (OrderState.AWAITING_CONFIRMATION, OrderEvent.EDIT, OrderState.COLLECTING),
    ])
    def test_legal_transitions(self, state, event, expected):
        assert next_order_state(state, event) == expected

    @pytest.mark.parametrize("state", list(OrderState))
    def test_cancel_from_any_state(self, state):
        assert can_transition(state, OrderEvent.CANCEL)
        assert next_order_state(state, OrderEvent.CANCEL) == OrderState.IDLE

    def test_illegal_transition_raises(self):
        with pytest.raises(InvalidOrderStateError) as exc_info:
            next_order_state(OrderState.IDLE, OrderEvent.AFFIRM)
        assert exc_info.value.details["current_state"] == "idle"
        assert exc_info.value.details["expected_states"] == ["awaiting_confirmation"]

    def test_confirmed_accepts_no_edit(self):
        assert (OrderState.CONFIRMED, OrderEvent.EDIT) not in ORDER_TRANSITIONS
        assert not can_transition(OrderState.CONFIRMED, OrderEvent.EDIT)

    def test_apply_cancel_clears_cart(self):
        memory = AgentMemory()
        memory.apply_event(OrderEvent.EDIT)
        memory.upsert_line("latte", "拿铁", 32.0, 1)

        memory.apply_event(OrderEvent.CANCEL)

        assert memory.order_state == OrderState.IDLE
        assert memory.cart == []


class TestSession:
    """会话测试"""

    def test_history_is_append_only(self):
        session = Session("s1")
        session.add_message(Role.USER, "你好")
        session.add_message(Role.ASSISTANT, "您好")

        assert [m.role for m in session.history] == [Role.USER, Role.ASSISTANT]
        with pytest.raises(dataclasses.FrozenInstanceError):
            session.history[0].content = "改写"

    def test_recent_history_window(self):
        session = Session("s1")
        for i in range(10):
            session.add_message(Role.USER, str(i))
        assert [m.content for m in session.recent_history(3)] == ["7", "8", "9"]

    def test_checkpoint_restore(self):
        session = Session("s1")
        session.add_message(Role.USER, "来杯拿铁")
        session.memory.upsert_line("latte", "拿铁", 32.0, 1)
        checkpoint = session.checkpoint()

        session.add_message(Role.USER, "再来一杯")
        session.memory.upsert_line("latte", "拿铁", 32.0, 1)
        session.memory.order_state = OrderState.COLLECTING
        session.restore(checkpoint)

        assert len(session.history) == 1
        assert session.memory.cart[0].quantity == 1
        assert session.memory.order_state == OrderState.IDLE

    def test_begin_turn_resets_turn_fields(self):
        memory = AgentMemory()
        memory.upsert_line("latte", "拿铁", 32.0, 1)
        memory.begin_turn()
        assert memory.guard_decision.value == "unset"
        assert memory.routed_agent.value == "unset"
        assert len(memory.cart) == 1


class TestAssociationRules:
    """关联规则测试"""

    def test_confidence_range(self):
        with pytest.raises(ValueError):
            AssociationRule("latte", "croissant", 0.0)
        with pytest.raises(ValueError):
            AssociationRule("latte", "croissant", 1.2)

    def test_rules_indexed_by_antecedent(self):
        table = AssociationRuleTable([
            AssociationRule("latte", "croissant", 0.7),
            AssociationRule("latte", "cheesecake", 0.5),
            AssociationRule("americano", "croissant", 0.6),
        ])
        assert len(table) == 3
        assert [r.consequent for r in table.rules_for("latte")] == ["croissant", "cheesecake"]
        assert table.rules_for("mocha") == []
