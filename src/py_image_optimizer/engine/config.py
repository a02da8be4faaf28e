"""配置构建器模块。

把外部传入的原始配置值（MCP 参数、表单数据等）构建为 OptimizerSettings，
pydantic 的校验错误统一转换为 ValidationError。
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, get_config
from ..exceptions import ValidationError as CustomValidationError
from ..models.constants import FormatSetting, get_format_alias
from ..models.settings import OptimizerSettings
from ..utils.message_formatter import format_validation_error


logger = logging.getLogger(__name__)


class SettingsBuilder:
    """优化配置构建器

    Args:
        base: 未指定的字段使用的基础配置，默认取全局配置
    """

    def __init__(self, base: OptimizerSettings | None = None):
        self.base = base

    def build(self, **raw: Any) -> OptimizerSettings:
        """在基础配置上覆盖原始值并校验

        Raises:
            CustomValidationError: 配置无效
        """
        base = self.base or self.from_app_config()
        values = base.model_dump()

        for key, value in raw.items():
            if value is None:
                continue
            if key not in OptimizerSettings.model_fields:
                raise CustomValidationError(
                    format_validation_error(key, value, "已知的配置项")
                )
            values[key] = value

        if isinstance(values.get("format"), str):
            values["format"] = self._normalize_format(values["format"])

        try:
            return OptimizerSettings(**values)
        except PydanticValidationError as e:
            raise CustomValidationError(self._format_validation_error(e)) from e

    @staticmethod
    def from_app_config(app_config: AppConfig | None = None) -> OptimizerSettings:
        """从全局默认值构建配置"""
        try:
            return OptimizerSettings.from_app_config(app_config or get_config())
        except PydanticValidationError as e:
            raise CustomValidationError(
                SettingsBuilder._format_validation_error(e)
            ) from e

    @staticmethod
    def _normalize_format(value: str) -> str:
        """接受 'WEBP'、'image/webp' 这类写法"""
        value = value.strip().lower()
        if value == FormatSetting.BOTH.value:
            return value
        normalized = get_format_alias(value.removeprefix("image/")).lower()
        if normalized not in FormatSetting._value2member_map_:
            logger.debug(f"未知格式写法: {value}")
        return normalized

    @staticmethod
    def _format_validation_error(error: PydanticValidationError) -> str:
        """格式化验证错误"""
        messages = []
        for err in error.errors():
            field = ".".join(str(loc) for loc in err["loc"])
            msg = err["msg"]
            if field:
                messages.append(f"{field}: {msg}")
            else:
                messages.append(msg)
        return "; ".join(messages)


def build_settings(**raw: Any) -> OptimizerSettings:
    """便捷的配置构建函数"""
    return SettingsBuilder().build(**raw)
