"""
LLM Factory — returns the chat model that proposes formulas, chosen by the
LLM_PROVIDER environment variable.

Supported providers:
  - claude  → langchain-anthropic (production)
  - openai  → langchain-openai (any OpenAI-compatible endpoint via OPENAI_BASE_URL)
  - ollama  → langchain-ollama (local)

Default is 'claude' for production safety.
"""

import os

from langchain_anthropic import ChatAnthropic
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI


def get_llm():
    """
    Returns the LangChain chat model selected by LLM_PROVIDER.
    Low temperature keeps the formula JSON stable across retries.
    """
    provider = os.getenv("LLM_PROVIDER", "claude")
    temperature = float(os.getenv("LLM_TEMPERATURE", "0.2"))

    if provider == "claude":
        return ChatAnthropic(
            model=os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6"),
            api_key=os.getenv("ANTHROPIC_API_KEY"),
            max_tokens=3000,
            temperature=temperature,
        )

    elif provider == "openai":
        return ChatOpenAI(
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            temperature=temperature,
        )

    elif provider == "ollama":
        return ChatOllama(
            model=os.getenv("OLLAMA_MODEL", "llama3.1"),
            temperature=temperature,
        )

    else:
        raise ValueError(f"Unknown LLM_PROVIDER: {provider}")
