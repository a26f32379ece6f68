"""Rewrite conversational questions into standalone search queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from groundrag.metrics.observability import PipelineMetrics, get_logger
from groundrag.models import ConversationTurn, TokenUsage
from groundrag.services.generation import ChatBackend

SYSTEM_PROMPT = """You turn user questions into search queries optimised for vector similarity search.

Goals:
1. Capture the user's intent and extract the key keywords and concepts.
2. Keep nouns, technical terms and core concepts that help retrieval.
3. Drop filler words, exclamations and context-dependent phrasing.
4. When conversation history is given, produce a query that stands on its own.

Rules:
- Preserve identifiers exactly as written: ticket numbers (HMW-445, JIRA-123), branch names, code names, version numbers.
- Keep technical terms, project names and feature names unchanged.
- Resolve pronouns and omitted references from the earlier conversation.
- Answer with one or two concise sentences that contain every important keyword.
- Never change the meaning of the question.

Examples:
- "how should I name the branch for the health feature of a ticket like HMW-445?"
  -> "HMW-445 jira ticket health feature implementation branch naming"
- "how does it work?" (earlier context: the RAG system)
  -> "RAG system how it works"
"""


@dataclass(frozen=True)
class RewriteResult:
    query: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    rewritten: bool = False


def format_history(history: Sequence[ConversationTurn], limit: int) -> str:
    lines = []
    for turn in list(history)[-limit:]:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


class QueryRewriter:
    """Reformulate a question for similarity search.

    Rewriting is an optimisation: any failure of the chat call returns the
    original question with zero usage.
    """

    def __init__(
        self,
        chat: ChatBackend | None = None,
        *,
        model: str | None = None,
        history_turns: int = 5,
        temperature: float = 0.2,
        max_tokens: int = 200,
    ) -> None:
        self._chat = chat
        self._model = model
        self._history_turns = history_turns
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger("rewriter")

    def build_user_prompt(self, question: str, history: Sequence[ConversationTurn] | None = None) -> str:
        if history and self._history_turns > 0:
            return (
                "Using the conversation history below, rewrite the last question as a search query "
                "optimised for vector search.\n\n"
                f"Conversation history:\n{format_history(history, self._history_turns)}\n\n"
                f"Current question: {question}\n\n"
                "Take the earlier context into account so the query can be understood on its own."
            )
        return f"Rewrite the following question as a search query optimised for vector search:\n\nQuestion: {question}"

    def rewrite(self, question: str, history: Sequence[ConversationTurn] | None = None) -> RewriteResult:
        if self._chat is None:
            return RewriteResult(query=question)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_user_prompt(question, history)},
        ]
        try:
            completion = self._chat.complete(
                messages,
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:  # noqa: BLE001 - rewriting must never fail the query
            self._logger.warning("rewrite.failed", question=question, detail=str(exc))
            PipelineMetrics.rewrite_fallbacks.inc()
            return RewriteResult(query=question)
        query = completion.text.strip()
        if not query:
            PipelineMetrics.rewrite_fallbacks.inc()
            return RewriteResult(query=question, usage=completion.usage)
        self._logger.info("rewrite.complete", question=question, rewritten_query=query)
        return RewriteResult(query=query, usage=completion.usage, rewritten=True)
