"""Generation collaborator backed by a langchain chat model."""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from ragchat.configs.config import AppConfig
from ragchat.core.service.models import GenerationResult, LLMRequest
from ragchat.infra.tokens import estimate_tokens

logger = logging.getLogger(__name__)


def build_chat_model(config: AppConfig) -> ChatOpenAI:
    """Create the ``ChatOpenAI`` client for the configured model server.

    Sampling parameters are bound per request from the response mode, so
    none are fixed here.  Retries are left to callers.
    """
    return ChatOpenAI(
        base_url=config.third_party.model_server_endpoint,
        api_key=config.llm.api_key or "unused",
        model=config.llm.model_name,
        timeout=config.llm.timeout_seconds,
        max_retries=0,
    )


def _usage_tokens(message: BaseMessage) -> int | None:
    usage = getattr(message, "usage_metadata", None)
    if usage:
        return usage.get("total_tokens")
    return None


class ChatModelGenerator:
    """Turns an ``LLMRequest`` into one non-streaming chat-model call.

    The request's model, temperature and token cap are bound per call and
    override the chat model's defaults.
    """

    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    async def __call__(self, request: LLMRequest) -> GenerationResult:
        bound = self._model.bind(
            model=request.model,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        messages = request.to_langchain_messages()
        reply = await bound.ainvoke(messages)

        text = reply.content if isinstance(reply.content, str) else str(reply.content)
        tokens = _usage_tokens(reply)
        if tokens is None:
            tokens = sum(estimate_tokens(str(m.content)) for m in messages)
            tokens += estimate_tokens(text)
        logger.debug(
            "Generated %d chars (%d tokens) with %s", len(text), tokens, request.model
        )
        return GenerationResult(text=text, tokens_used=tokens)
