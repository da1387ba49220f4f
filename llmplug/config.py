"""配置管理"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .llm.providers import default_registry
from .schema import GenerationOptions

# API key 占位符
PLACEHOLDER_KEYS = ("YOUR_API_KEY_HERE", "YOUR_API_KEY")

CONFIG_FILENAME = "llmplug.yaml"


@dataclass
class Config:
    """客户端配置"""

    provider: str = "openai"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    model: Optional[str] = None
    timeout: float = 120.0
    extra_headers: Dict[str, str] = field(default_factory=dict)
    options: GenerationOptions = field(default_factory=GenerationOptions)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        """加载配置"""
        if config_path is None:
            config_path = cls.find_config_file()

        if config_path is None or not Path(config_path).exists():
            raise ConfigurationError(f"配置文件未找到，请创建 config/{CONFIG_FILENAME}")

        return cls.from_yaml(config_path)

    @staticmethod
    def find_config_file(filename: str = CONFIG_FILENAME) -> Path | None:
        """查找配置文件"""
        # 优先级: 当前目录 > 用户目录
        search_paths = [
            Path.cwd() / "config" / filename,
            Path.home() / ".llmplug" / "config" / filename,
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "Config":
        """从 YAML 文件加载配置"""
        config_path = Path(config_path)

        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"配置文件格式错误: {config_path}: {e}") from e

        if not data:
            raise ConfigurationError(f"配置文件为空: {config_path}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件顶层必须是映射: {config_path}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict) -> "Config":
        """从字典构建配置"""
        provider = str(data.get("provider", "openai")).lower()
        provider_config = default_registry.get(provider)

        # 如果 api_key 为空或是占位符，尝试从环境变量读取
        api_key = data.get("api_key") or None
        if api_key in PLACEHOLDER_KEYS:
            api_key = None
        if not api_key and provider_config is not None and provider_config.api_key_env:
            api_key = os.environ.get(provider_config.api_key_env) or None

        try:
            options = GenerationOptions.model_validate(data.get("options") or {})
        except PydanticValidationError as e:
            raise ConfigurationError(f"options 配置无效: {e}", provider) from e

        return cls(
            provider=provider,
            api_key=api_key,
            api_base=data.get("api_base"),
            model=data.get("model"),
            timeout=float(data.get("timeout", 120.0)),
            extra_headers=dict(data.get("extra_headers") or {}),
            options=options,
        )
