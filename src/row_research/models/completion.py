"""Message, CompletionRequest, CompletionResponse Pydantic models."""

from typing import Literal

from pydantic import BaseModel


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

    model_config = {"frozen": True}


class CompletionRequest(BaseModel):
    messages: tuple[Message, ...]
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4096

    model_config = {"frozen": True}


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    content: str
    model: str = ""
    usage: Usage | None = None
