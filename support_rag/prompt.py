#!/usr/bin/env python3
"""Prompt templates for the support assistant.

The instruction block tells the model that context arrives in strict
priority order and that it must answer from the first relevant item only.
Without that rule the model blends items, e.g. two sources naming
different people as CEO.
"""

from typing import List, Optional, Sequence

from support_rag.config import CONFIG
from support_rag.models import ConversationMessage, RankedContextItem


class PromptContract:
    """Build the LLM prompt around the ranked context."""

    SYSTEM_PROMPT = """You are a helpful customer support assistant. Your role is to:

1. Provide accurate and helpful information to customers
2. Be polite, professional, and empathetic
3. Ask clarifying questions when needed
4. Escalate complex issues to human agents when appropriate
5. Use the provided company information and FAQs to answer questions
6. Keep responses concise but comprehensive
7. Always maintain a friendly and supportive tone

If you don't know the answer to a question, be honest about it and suggest alternative ways to help the customer."""

    NO_CONTEXT_INSTRUCTION = """NO SUPPLEMENTARY INFORMATION AVAILABLE.
No company information or FAQ entries matched this question. Answer as a general customer support assistant."""

    PRIORITY_HEADER = """CRITICAL INSTRUCTIONS: The information below is supplied in STRICT PRIORITY ORDER. Item #1 has the highest priority.

PRIORITY RULES:
1. Answer using ONLY the FIRST item in the list that is relevant to the user's question.
2. Do NOT combine, blend or mix information from more than one item.
3. Consult item #2 only if item #1 does not apply to the question, item #3 only if items #1 and #2 do not apply, and so on.
4. If an item answers the question, ignore every lower-ranked item, even when it disagrees."""

    PRIORITY_EXAMPLE = (
        'EXAMPLE: If the user asks "Who is the CEO?" and item #1 names a CEO, '
        "answer with ONLY that name. Do not look at other items."
    )

    @staticmethod
    def format_item(position: int, item: RankedContextItem, char_limit: Optional[int] = None) -> str:
        limit = char_limit or CONFIG.CONTEXT_CHAR_LIMIT
        body = item.body[:limit]
        return f"{position}. [{item.source_kind.value}] {item.title}: {body}"

    @staticmethod
    def build_instruction(ranked_items: Sequence[RankedContextItem]) -> str:
        """Serialize the ranked context into the instruction block.

        Args:
            ranked_items: Context in final rank order (position 1 wins)

        Returns:
            Instruction text; the no-information fallback when empty
        """
        if not ranked_items:
            return PromptContract.NO_CONTEXT_INSTRUCTION

        numbered = "\n\n".join(
            PromptContract.format_item(idx, item) for idx, item in enumerate(ranked_items, 1)
        )
        return (
            f"{PromptContract.PRIORITY_HEADER}\n\n"
            f"PRIORITY-ORDERED INFORMATION:\n{numbered}\n\n"
            f"{PromptContract.PRIORITY_EXAMPLE}"
        )

    @staticmethod
    def format_history(history: Sequence[ConversationMessage], max_turns: Optional[int] = None) -> str:
        turns = CONFIG.HISTORY_TURNS if max_turns is None else max_turns
        if turns <= 0 or not history:
            return ""
        lines = []
        for msg in list(history)[-turns:]:
            speaker = "User" if msg.role == "user" else "Assistant"
            lines.append(f"{speaker}: {msg.content}")
        return "\n".join(lines)

    @staticmethod
    def build_prompt(
        question: str,
        ranked_items: Sequence[RankedContextItem],
        history: Sequence[ConversationMessage] = (),
        max_turns: Optional[int] = None,
    ) -> str:
        """Build the full completion prompt.

        Args:
            question: Latest user message
            ranked_items: Output of the context assembler
            history: Earlier conversation messages, oldest first
            max_turns: How many history messages to keep (default HISTORY_TURNS)

        Returns:
            Prompt text for a single completion call
        """
        sections: List[str] = [
            PromptContract.SYSTEM_PROMPT,
            PromptContract.build_instruction(ranked_items),
        ]

        history_text = PromptContract.format_history(history, max_turns)
        if history_text:
            sections.append(f"Conversation History:\n{history_text}")

        if ranked_items:
            closing = (
                f'Please respond to the user\'s latest message: "{question}"\n\n'
                "Remember: use ONLY the first relevant item above. "
                "Do not supplement it with general knowledge or with other items."
            )
        else:
            closing = f'Please respond to the user\'s latest message: "{question}"'
        sections.append(closing)

        return "\n\n".join(sections)
