"""Generation backends for groundrag."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from openai import OpenAI, OpenAIError

from groundrag.models import ConversationTurn, RetrievedItem, TokenUsage

LOGGER = logging.getLogger(__name__)

Message = Mapping[str, str]


class GenerationError(RuntimeError):
    """Raised when the language model call fails."""


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for chat completions."""

    model: str = "gpt-4o-mini"
    max_tokens: int = 2000
    temperature: float = 0.3
    history_turns: int = 5


@dataclass(frozen=True)
class ChatCompletion:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class GeneratedAnswer:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class ChatBackend(Protocol):
    """Minimal chat-completion contract shared by the rewriter and the generators."""

    def complete(
        self,
        messages: Sequence[Message],
        *,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 512,
    ) -> ChatCompletion:
        """Return the assistant reply for ``messages``."""


class AnswerGenerator(Protocol):
    """Protocol describing grounded answer generation."""

    def generate(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None = None,
    ) -> GeneratedAnswer:
        """Return an answer that cites only ``items``."""


class OpenAIChatBackend:
    """Chat completions via the OpenAI SDK."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "gpt-4o-mini",
        timeout_seconds: float = 30.0,
        client: OpenAI | None = None,
    ) -> None:
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds)
        self._default_model = default_model

    def complete(
        self,
        messages: Sequence[Message],
        *,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 512,
    ) -> ChatCompletion:
        try:
            response = self._client.chat.completions.create(
                model=model or self._default_model,
                messages=[dict(message) for message in messages],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise GenerationError(f"Chat completion failed: {exc}") from exc
        text = ""
        if response.choices and response.choices[0].message.content:
            text = response.choices[0].message.content
        usage = response.usage
        return ChatCompletion(
            text=text,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )


def _text(payload: Mapping[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    return str(value) if value else default


def history_messages(history: Sequence[ConversationTurn] | None, limit: int) -> list[dict[str, str]]:
    if not history or limit <= 0:
        return []
    return [
        {"role": "user" if turn.role == "user" else "assistant", "content": turn.content}
        for turn in list(history)[-limit:]
    ]


class DocumentPromptBuilder:
    """Prompts for answers grounded in documentation chunks, cited as ``[Document n]``."""

    system_prompt = (
        "You are an assistant that answers strictly from the provided documents.\n"
        "- Answer directly, without introductions or closing remarks.\n"
        "- Use only information present in the documents; never add outside knowledge.\n"
        "- Match the format to the request: code blocks for examples, numbered steps for how-to "
        "questions, a short paragraph for explanations.\n"
        "- Cite every document you use with its marker, for example [Document 2].\n"
        "- If the documents do not contain the answer, reply only: "
        "\"The provided documents do not contain information about this question.\""
    )

    def build_context(self, items: Sequence[RetrievedItem]) -> str:
        blocks = []
        for position, item in enumerate(items, start=1):
            payload = item.payload
            blocks.append(
                f"[Document {position}]\n"
                f"Title: {_text(payload, 'source_title', 'Unknown')}\n"
                f"URL: {_text(payload, 'source_url')}\n"
                f"Content: {_text(payload, 'text')}"
            )
        return "\n\n---\n\n".join(blocks)

    def guidance(self, question: str) -> str:
        lowered = question.lower()
        if any(word in lowered for word in ("example", "show me", "sample")):
            return "\n\nThe user asked for an example: give a one or two line explanation, then the example in a code block."
        if any(word in lowered for word in ("how do", "how to", "how can", "steps")):
            return "\n\nThe user asked how to do something: answer with concise numbered steps."
        return ""

    def build_messages(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None,
        history_turns: int,
    ) -> list[dict[str, str]]:
        user_prompt = (
            f"Answer the question using the documents below.\n\n{self.build_context(items)}\n\n"
            f"Question: {question}\n\n"
            f"Use only the information in these documents and cite them as [Document n].{self.guidance(question)}"
        )
        return [
            {"role": "system", "content": self.system_prompt},
            *history_messages(history, history_turns),
            {"role": "user", "content": user_prompt},
        ]


class ApiPromptBuilder:
    """Prompts for answers grounded in API endpoint records."""

    system_prompt = (
        "You are an expert who explains how to use an HTTP API using only the provided API documentation.\n"
        "Principles: be accurate (never guess beyond the documentation), be clear, be complete "
        "(authentication, parameters, request and response formats, error handling).\n"
        "Structure: analyse what the user wants to build, recommend the endpoints to use and why, "
        "give step-by-step implementation guidance, then the endpoint details.\n"
        "Always name the endpoints you rely on as METHOD /path, for example GET /users/{id}.\n"
        "Show parameters and request body fields as markdown tables "
        "(| name | type | in | required | description |), success responses as ```json blocks, "
        "and summarise error status codes.\n"
        "Mark anything the documentation does not state as \"not specified in the documentation\"."
    )

    def build_context(self, items: Sequence[RetrievedItem]) -> str:
        blocks = []
        for position, item in enumerate(items, start=1):
            payload = item.payload
            endpoint = _text(payload, "endpoint") or f"{_text(payload, 'method')} {_text(payload, 'path')}"
            summary = _text(payload, "summary")
            label = f"{summary} ({endpoint})" if summary else endpoint
            details = [
                f"endpoint: {endpoint}",
                f"summary: {summary or 'none'}",
                f"description: {_text(payload, 'description', 'none')}",
            ]
            tags = payload.get("tags") or []
            if tags:
                details.append(f"tags: {', '.join(str(tag) for tag in tags)}")
            for key, title in (
                ("parameters_text", "parameters"),
                ("request_body_text", "request body"),
                ("responses_text", "responses"),
            ):
                if payload.get(key):
                    details.append(f"{title}:\n{payload[key]}")
            if payload.get("source_url"):
                details.append(f"specification URL: {payload['source_url']}")
            blocks.append(f"[API {position}: {label}]\n" + "\n".join(details))
        return "\n\n---\n\n".join(blocks)

    def build_messages(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None,
        history_turns: int,
    ) -> list[dict[str, str]]:
        user_prompt = (
            f"Answer the question using the API documentation below.\n\n{self.build_context(items)}\n\n"
            f"Question: {question}\n\n"
            "Requirements:\n"
            "1. Use only the API documentation above.\n"
            "2. Recommend the endpoints needed and explain the order of calls.\n"
            "3. Show parameters, request body and response formats clearly.\n"
            "4. Explain error handling.\n"
            "5. Mark missing information as \"not specified in the documentation\"."
        )
        return [
            {"role": "system", "content": self.system_prompt},
            *history_messages(history, history_turns),
            {"role": "user", "content": user_prompt},
        ]


class PromptBuilder(Protocol):
    def build_messages(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None,
        history_turns: int,
    ) -> list[dict[str, str]]:
        """Return the chat messages for a grounded answer."""


class ChatAnswerGenerator:
    """Grounded answers from a chat model."""

    def __init__(
        self,
        chat: ChatBackend,
        prompt_builder: PromptBuilder,
        config: GenerationConfig | None = None,
    ) -> None:
        self._chat = chat
        self._prompt_builder = prompt_builder
        self._config = config or GenerationConfig()

    def generate(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None = None,
    ) -> GeneratedAnswer:
        messages = self._prompt_builder.build_messages(question, items, history, self._config.history_turns)
        try:
            completion = self._chat.complete(
                messages,
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
        except GenerationError:
            raise
        except Exception as exc:  # noqa: BLE001 - normalise backend failures
            LOGGER.error("Failed to generate answer: %s", exc)
            raise GenerationError(f"Answer generation failed: {exc}") from exc
        return GeneratedAnswer(text=completion.text, usage=completion.usage)


class TemplateAnswerGenerator:
    """Simple deterministic generator used for tests and offline environments."""

    def generate(
        self,
        question: str,
        items: Sequence[RetrievedItem],
        history: Sequence[ConversationTurn] | None = None,
    ) -> GeneratedAnswer:
        if not items:
            return GeneratedAnswer(text="I do not have enough relevant context to answer that question.")
        payload = items[0].payload
        if payload.get("endpoint"):
            summary = _text(payload, "summary")
            return GeneratedAnswer(
                text=(
                    f"For '{question}' use {payload['endpoint']}"
                    + (f" ({summary})." if summary else ".")
                )
            )
        return GeneratedAnswer(
            text=f"According to [Document 1] ({_text(payload, 'source_title', 'Unknown')}): {_text(payload, 'text')}"
        )
