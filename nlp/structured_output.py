"""解析并校验模型返回的结构化结果"""

import json
import logging
import re
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from infrastructure.exceptions import MalformedStructuredOutput

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _load_json_object(response: str) -> Dict[str, Any]:
    text = _CODE_FENCE.sub("", response.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"直接 JSON 解析失败: {e}")
        # 尝试提取 JSON 块
        match = _JSON_OBJECT.search(text)
        if not match:
            raise MalformedStructuredOutput("响应中没有 JSON 对象", raw=response)
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise MalformedStructuredOutput(f"JSON 解析失败: {e}", raw=response)

    if not isinstance(data, dict):
        raise MalformedStructuredOutput("JSON 顶层不是对象", raw=response)
    return data


def parse_structured(response: str, model: Type[T]) -> T:
    """解析并按 Schema 校验结构化输出

    Args:
        response: 模型原始响应
        model: 期望的 pydantic 模型

    Returns:
        校验通过的模型实例

    Raises:
        MalformedStructuredOutput: 非法 JSON、缺少必填字段或枚举值越界
    """
    if not response or not response.strip():
        raise MalformedStructuredOutput("空响应", raw=response)

    data = _load_json_object(response)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        logger.warning(f"{model.__name__} 校验失败: {fields}")
        raise MalformedStructuredOutput(f"{model.__name__} 字段校验失败: {fields}", raw=response)
