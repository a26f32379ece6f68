from __future__ import annotations

from typing import Sequence

from groundrag.models import ConversationTurn, TokenUsage
from groundrag.retrieval.rewriter import QueryRewriter, format_history
from groundrag.services.generation import ChatCompletion, GenerationError


class _StubChat:
    def __init__(self, reply: str = "", *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.messages: list[Sequence[dict]] = []
        self.kwargs: list[dict] = []

    def complete(self, messages, *, model=None, temperature=0.3, max_tokens=512) -> ChatCompletion:
        self.messages.append(messages)
        self.kwargs.append({"model": model, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return ChatCompletion(text=self.reply, usage=TokenUsage(prompt_tokens=20, completion_tokens=5, total_tokens=25))


def _history(count: int) -> list[ConversationTurn]:
    return [
        ConversationTurn(role="user" if n % 2 == 0 else "assistant", content=f"turn {n}")
        for n in range(count)
    ]


def test_rewrite_returns_model_query_and_usage():
    chat = _StubChat("  HMW-445 branch naming convention  ")
    result = QueryRewriter(chat, model="gpt-4o-mini").rewrite("how do I name the branch for HMW-445?")
    assert result.query == "HMW-445 branch naming convention"
    assert result.rewritten
    assert result.usage.total_tokens == 25
    assert chat.kwargs == [{"model": "gpt-4o-mini", "temperature": 0.2, "max_tokens": 200}]


def test_rewrite_failure_falls_back_to_question():
    chat = _StubChat(error=GenerationError("rate limited"))
    result = QueryRewriter(chat).rewrite("what is the refund policy?")
    assert result.query == "what is the refund policy?"
    assert not result.rewritten
    assert result.usage == TokenUsage()


def test_unexpected_errors_also_fall_back():
    result = QueryRewriter(_StubChat(error=RuntimeError("boom"))).rewrite("question")
    assert result.query == "question"


def test_empty_reply_keeps_question():
    assert QueryRewriter(_StubChat("   ")).rewrite("question").query == "question"


def test_without_chat_backend_question_is_used_verbatim():
    result = QueryRewriter().rewrite("question", _history(3))
    assert result.query == "question"
    assert result.usage.total_tokens == 0


def test_only_last_five_turns_reach_the_prompt():
    chat = _StubChat("rewritten")
    QueryRewriter(chat, history_turns=5).rewrite("and then?", _history(8))
    prompt = chat.messages[0][-1]["content"]
    assert "turn 2" not in prompt
    for n in range(3, 8):
        assert f"turn {n}" in prompt
    assert "Current question: and then?" in prompt


def test_format_history_labels_speakers():
    text = format_history(_history(2), 5)
    assert text == "User: turn 0\nAssistant: turn 1"
