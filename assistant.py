"""
RaktSahayak, the FAQ assistant.

The reply text comes from a chat model; by default a local Ollama server.
"""
import logging
import os
from typing import Callable, List, Literal, Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)

OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434/api/chat")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "phi3:mini")

SYSTEM_INSTRUCTION = (
    "You are RaktSahayak, a helpful assistant for a blood donation app. Your name means "
    "'Blood Helper'. Answer questions about blood eligibility, safety, and post-donation care. "
    "Keep answers short and encouraging. If the user asks about unrelated topics, politely "
    "refuse by saying 'As RaktSahayak, I can only answer questions related to blood donation. "
    "How can I help you with that?'"
)

FALLBACK_REPLY = "Sorry, I can't answer right now. Please try again in a moment."


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    content: str


Generator = Callable[[List[dict]], str]


def to_chat_messages(history: List[ChatMessage]) -> List[dict]:
    messages = [{"role": "system", "content": SYSTEM_INSTRUCTION}]
    for msg in history:
        messages.append({
            "role": "assistant" if msg.role == "model" else "user",
            "content": msg.content,
        })
    return messages


def ollama_generate(messages: List[dict]) -> str:
    payload = {
        "model": OLLAMA_MODEL,
        "messages": messages,
        "stream": False,
        "options": {"temperature": 0.9},
    }
    r = requests.post(OLLAMA_URL, json=payload, timeout=60)
    r.raise_for_status()
    out = r.json()
    return out.get("message", {}).get("content", "").strip()


def continue_chat(history: List[ChatMessage], generate: Optional[Generator] = None) -> str:
    generate = generate or ollama_generate
    try:
        return generate(to_chat_messages(history))
    except requests.RequestException as e:
        logger.error("Chat backend unavailable: %s", e)
        return FALLBACK_REPLY
