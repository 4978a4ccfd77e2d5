"""LLM client object as BaseChatModel in langchain."""

from .generator import ChatModelGenerator, build_chat_model  # noqa: F401
