"""
Application data models
"""

from typing import Dict, List, Optional, Any, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import FAKE_STREAMING_SUFFIX, MAX_OUTPUT_TOKENS


# ============================================================================
# OpenAI 侧
# ============================================================================

class ImageUrl(BaseModel):
    """Image URL model"""
    url: str
    detail: Optional[str] = "auto"


class ContentPart(BaseModel):
    """Content part model for OpenAI's new content format"""
    type: str
    text: Optional[str] = None
    image_url: Optional[ImageUrl] = None


class Message(BaseModel):
    """Chat message model"""
    role: str
    content: Optional[Union[str, List[ContentPart]]] = None
    reasoning_content: Optional[str] = None
    name: Optional[str] = None

    class Config:
        extra = "allow"


class OpenAIRequest(BaseModel):
    """OpenAI-compatible request model"""
    model: str
    messages: List[Message]
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    n: Optional[int] = None
    seed: Optional[int] = None
    response_format: Optional[Dict[str, Any]] = None

    class Config:
        extra = "allow"

    def is_health_check(self) -> bool:
        """单条 user 消息且内容恰好为 "Hi" 时视为探活请求"""
        return (
            len(self.messages) == 1
            and self.messages[0].role == "user"
            and self.messages[0].content == "Hi"
        )

    def is_fake_streaming(self) -> bool:
        return self.model.endswith(FAKE_STREAMING_SUFFIX) and bool(self.stream)

    def get_real_model(self) -> str:
        if self.model.endswith(FAKE_STREAMING_SUFFIX):
            return self.model[: -len(FAKE_STREAMING_SUFFIX)]
        return self.model

    def limit_max_tokens(self) -> None:
        if self.max_tokens is not None and self.max_tokens > MAX_OUTPUT_TOKENS:
            self.max_tokens = MAX_OUTPUT_TOKENS

    def filter_empty_messages(self) -> None:
        """移除内容为空白字符串的消息；null 与多模态数组内容保留"""
        kept = []
        for msg in self.messages:
            if isinstance(msg.content, str) and not msg.content.strip():
                continue
            kept.append(msg)
        self.messages = kept


class ChatMessage(BaseModel):
    role: str
    content: str = ""
    reasoning_content: Optional[str] = None


class ChatCompletionChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatCompletionChoice]
    usage: Optional[Usage] = None


class Delta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    reasoning_content: Optional[str] = None


class StreamChoice(BaseModel):
    index: int = 0
    delta: Delta
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: List[StreamChoice] = Field(default_factory=list)
    usage: Optional[Usage] = None


class Model(BaseModel):
    """Model information for listing"""
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelsResponse(BaseModel):
    """Models list response model"""
    object: str = "list"
    data: List[Model]


# ============================================================================
# Gemini 侧（线上使用 camelCase，入参同时接受 snake_case）
# ============================================================================

class GeminiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GeminiInlineData(GeminiModel):
    mime_type: str = "image/png"
    data: str = ""


class GeminiPart(GeminiModel):
    text: Optional[str] = None
    thought: Optional[bool] = None
    inline_data: Optional[GeminiInlineData] = None

    @classmethod
    def from_text(cls, text: str) -> "GeminiPart":
        return cls(text=text)

    @classmethod
    def from_inline_data(cls, mime_type: str, data: str) -> "GeminiPart":
        return cls(inline_data=GeminiInlineData(mime_type=mime_type, data=data))

    @property
    def is_thought(self) -> bool:
        return bool(self.thought)


class GeminiContent(GeminiModel):
    role: str = ""
    parts: List[GeminiPart] = Field(default_factory=list)


class GeminiThinkingConfig(GeminiModel):
    thinking_budget: int
    include_thoughts: bool


class GeminiGenerationConfig(GeminiModel):
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    thinking_config: Optional[GeminiThinkingConfig] = None


class GeminiSafetySetting(GeminiModel):
    category: str
    threshold: str


class GeminiRequest(GeminiModel):
    contents: List[GeminiContent]
    generation_config: Optional[GeminiGenerationConfig] = None
    safety_settings: Optional[List[GeminiSafetySetting]] = None


class GeminiCandidate(GeminiModel):
    content: GeminiContent = Field(default_factory=GeminiContent)
    finish_reason: Optional[str] = None
    index: int = 0


class GeminiUsageMetadata(GeminiModel):
    prompt_token_count: Optional[int] = None
    candidates_token_count: Optional[int] = None
    total_token_count: Optional[int] = None


class GeminiResponse(GeminiModel):
    """Both the non-streaming response and a single streamed event share this shape."""
    candidates: List[GeminiCandidate] = Field(default_factory=list)
    usage_metadata: Optional[GeminiUsageMetadata] = None
