from webpilot.models.models import BaseAPIModel, ModelConfig
from webpilot.models.response_models import (
    HarmonizedResponse,
    ResponseMetadata,
    ToolCall,
    UsageInfo,
)

__all__ = [
    "BaseAPIModel",
    "ModelConfig",
    "HarmonizedResponse",
    "ResponseMetadata",
    "ToolCall",
    "UsageInfo",
]
