"""点单阶段

抽取点单意图，解析商品，按订单状态机修改购物车。

状态机:
    idle ──编辑──▶ collecting ──确认──▶ awaiting_confirmation ──肯定──▶ confirmed
                     ▲    │                     │
                     └────┘编辑                  └──编辑──▶ collecting
    任意状态 ──取消──▶ idle（清空购物车）

一轮中的所有商品都解析成功后才修改购物车，任何一项无法解析时购物车保持不变。
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from config import AgentSettings
from core.interfaces import CatalogService, CompletionService
from core.types import OrderEvent, OrderIntent, OrderState
from infrastructure.exceptions import APIError, UnresolvedReference
from models.catalog import Product
from models.session import AgentMemory, Message
from nlp.prompts import ORDER_INTENT_PROMPT
from nlp.product_matcher import ProductMatcher
from nlp.schemas import IntentItem, OrderIntentPayload
from .base import StageService
from .recommendation import RecommendationEngine

logger = logging.getLogger(__name__)

CLARIFY_REPLY = "不好意思，我没太理解。您是想点单、修改订单，还是确认下单呢？"
ASK_PRODUCT_REPLY = "请问您想要哪一款呢？"
EMPTY_CART_REPLY = "您的购物车还是空的，想来点什么？"
ALREADY_CONFIRMED_REPLY = "您的订单已经确认啦，如需取消请告诉我。"
NOTHING_TO_CANCEL_REPLY = "当前没有进行中的订单。"
CANCELLED_REPLY = "好的，已为您取消订单。"


def format_price(value: float) -> str:
    return f"¥{value:.2f}"


@dataclass
class OrderResult:
    """点单阶段结果"""
    reply: str
    intent: OrderIntent
    order_state: OrderState
    mutated: bool = False
    unresolved: List[str] = field(default_factory=list)


class OrderTakingStage(StageService):
    """点单阶段"""

    stage_name = "order_taking"

    def __init__(
        self,
        completion: CompletionService,
        catalog: CatalogService,
        matcher: Optional[ProductMatcher] = None,
        engine: Optional[RecommendationEngine] = None,
        settings: Optional[AgentSettings] = None
    ):
        super().__init__(completion, settings)
        self.catalog = catalog
        self.matcher = matcher or ProductMatcher(catalog, self.settings.fuzzy_threshold)
        self.engine = engine

    # ==================== 意图抽取 ====================

    def _build_instruction(self, memory: AgentMemory) -> str:
        cart = "\n".join(f"- {line.to_string()}" for line in memory.cart) or "（空）"

        recommendations = "（无）"
        if memory.recommendation_cache:
            names = []
            for i, product_id in enumerate(memory.recommendation_cache, 1):
                product = self.catalog.get_product(product_id)
                names.append(f"{i}. {product.name if product else product_id}")
            recommendations = "\n".join(names)

        menu = "\n".join(
            f"- {p.name}（{p.category}，¥{p.price:g}）" for p in self.catalog.list_products()
        )
        return ORDER_INTENT_PROMPT.format(
            order_state=memory.order_state.value,
            cart=cart,
            recommendations=recommendations,
            menu=menu
        )

    async def extract_intent(self, history: Sequence[Message], memory: AgentMemory) -> OrderIntentPayload:
        return await self._request_structured(history, self._build_instruction(memory), OrderIntentPayload)

    # ==================== 主流程 ====================

    async def handle(self, history: Sequence[Message], memory: AgentMemory) -> OrderResult:
        try:
            payload = await self.extract_intent(history, memory)
        except APIError as e:
            self._fallback(e, default=OrderIntent.UNCLEAR.value)
            return self._unchanged(CLARIFY_REPLY, OrderIntent.UNCLEAR, memory)

        intent = OrderIntent.from_string(payload.intent)
        self._metrics.increment("stage.order_taking.intent", {"intent": intent.value})

        if intent == OrderIntent.CANCEL:
            return self._cancel(memory)
        if memory.order_state == OrderState.CONFIRMED:
            return self._unchanged(ALREADY_CONFIRMED_REPLY, intent, memory)
        if intent == OrderIntent.CONFIRM:
            return self._confirm(memory)
        if intent.is_edit:
            return self._edit(intent, payload.items, memory)
        return self._unchanged(CLARIFY_REPLY, intent, memory)

    @staticmethod
    def _unchanged(reply: str, intent: OrderIntent, memory: AgentMemory, **kwargs) -> OrderResult:
        return OrderResult(reply=reply, intent=intent, order_state=memory.order_state, **kwargs)

    def _cancel(self, memory: AgentMemory) -> OrderResult:
        had_order = bool(memory.cart) or memory.order_state != OrderState.IDLE
        memory.apply_event(OrderEvent.CANCEL)
        logger.info("订单已取消" if had_order else "无进行中的订单，取消无效果")
        return OrderResult(
            reply=CANCELLED_REPLY if had_order else NOTHING_TO_CANCEL_REPLY,
            intent=OrderIntent.CANCEL,
            order_state=memory.order_state,
            mutated=had_order
        )

    def _confirm(self, memory: AgentMemory) -> OrderResult:
        if not memory.cart:
            return self._unchanged(EMPTY_CART_REPLY, OrderIntent.CONFIRM, memory)

        if memory.order_state == OrderState.AWAITING_CONFIRMATION:
            memory.apply_event(OrderEvent.AFFIRM)
            reply = f"订单已确认：{self._summary(memory)}。感谢您的光临！"
            return OrderResult(reply, OrderIntent.CONFIRM, memory.order_state, mutated=True)

        memory.apply_event(OrderEvent.REQUEST_CONFIRMATION)
        reply = f"请确认您的订单：{self._summary(memory)}。"
        upsell = self._upsell(memory)
        if upsell:
            reply += upsell
        reply += "确认下单吗？"
        return OrderResult(reply, OrderIntent.CONFIRM, memory.order_state, mutated=True)

    def _upsell(self, memory: AgentMemory) -> str:
        """确认前的搭配推荐，写入推荐缓存供「加第一个」使用"""
        if not (self.settings.upsell_on_confirm and self.engine):
            return ""
        candidates = self.engine.by_association(memory.cart_product_ids())
        if not candidates:
            return ""
        memory.recommendation_cache = [c.product.id for c in candidates]
        names = "、".join(c.product.name for c in candidates)
        return f"很多顾客会搭配{names}，需要的话可以加上。"

    # ==================== 编辑 ====================

    def _resolve_item(self, item: IntentItem, memory: AgentMemory) -> Product:
        if item.recommendation_index is not None:
            cache = memory.recommendation_cache or []
            index = item.recommendation_index - 1
            if index < len(cache):
                product = self.catalog.get_product(cache[index])
                if product is not None:
                    return product
            if not item.product_name:
                raise UnresolvedReference([f"第{item.recommendation_index}个推荐"])

        match = self.matcher.match(item.product_name)
        if match is None:
            raise UnresolvedReference([item.product_name or "未说明的商品"])
        return match.product

    def _resolve_items(
        self,
        items: Sequence[IntentItem],
        memory: AgentMemory
    ) -> List[Tuple[IntentItem, Product]]:
        """解析全部商品

        Raises:
            UnresolvedReference: 包含所有无法解析的名称
        """
        resolved = []
        unresolved = []
        for item in items:
            try:
                resolved.append((item, self._resolve_item(item, memory)))
            except UnresolvedReference as e:
                unresolved.extend(e.names)
        if unresolved:
            raise UnresolvedReference(unresolved)
        return resolved

    def _edit(self, intent: OrderIntent, items: Sequence[IntentItem], memory: AgentMemory) -> OrderResult:
        if not items:
            return self._unchanged(ASK_PRODUCT_REPLY, intent, memory)

        try:
            resolved = self._resolve_items(items, memory)
        except UnresolvedReference as e:
            self._metrics.increment("stage.order_taking.unresolved")
            popular = "、".join(p.name for p in self.catalog.list_popular(3))
            reply = f"抱歉，没有找到「{'、'.join(e.names)}」。我们的热门商品有{popular}，您想要哪一款？"
            return self._unchanged(reply, intent, memory, unresolved=list(e.names))

        if intent == OrderIntent.ADD:
            zero = [product.name for item, product in resolved if item.quantity == 0]
            if zero:
                return self._unchanged(f"请问{'、'.join(zero)}要几份呢？", intent, memory)

        if intent in (OrderIntent.REMOVE, OrderIntent.MODIFY):
            missing = [product.name for _, product in resolved if memory.find_line(product.id) is None]
            if missing:
                reply = f"您的购物车里没有{'、'.join(missing)}。"
                if memory.cart:
                    reply += f"当前订单：{self._summary(memory)}。"
                return self._unchanged(reply, intent, memory)

        was_awaiting = memory.order_state == OrderState.AWAITING_CONFIRMATION
        memory.apply_event(OrderEvent.EDIT)

        changes = []
        for item, product in resolved:
            change = self._apply(intent, item, product, memory)
            if change not in changes:
                changes.append(change)

        reply = f"{'，'.join(changes)}。"
        if memory.cart:
            reply += f"当前订单：{self._summary(memory)}。"
        else:
            reply += "购物车已经空了。"
        if was_awaiting:
            reply += "订单有变动，下单前需要再确认一次。"
        return OrderResult(reply, intent, memory.order_state, mutated=True)

    @staticmethod
    def _apply(intent: OrderIntent, item: IntentItem, product: Product, memory: AgentMemory) -> str:
        modifiers = [item.modifier.strip()] if item.modifier and item.modifier.strip() else []

        if intent == OrderIntent.ADD:
            quantity = item.quantity if item.quantity is not None else 1
            memory.upsert_line(product.id, product.name, product.price, quantity, modifiers)
            return f"已添加{product.name} x{quantity}"

        if intent == OrderIntent.REMOVE:
            memory.remove_quantity(product.id, item.quantity or None)
            line = memory.find_line(product.id)
            if line is None:
                return f"已移除{product.name}"
            return f"{product.name}减少到 x{line.quantity}"

        # MODIFY；同一轮前面的条目可能已删掉该行
        line = memory.find_line(product.id)
        if line is None:
            return f"已移除{product.name}"
        quantity = item.quantity if item.quantity is not None else line.quantity
        memory.set_quantity(product.id, quantity, modifiers)
        if quantity <= 0:
            return f"已移除{product.name}"
        return f"已修改为{line.to_string()}"

    @staticmethod
    def _summary(memory: AgentMemory) -> str:
        lines = "，".join(line.to_string() for line in memory.cart)
        return f"{lines}，合计{format_price(memory.cart_total)}"
