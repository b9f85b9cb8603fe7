"""Prompt templates for canvas questions.

The system message is user-configurable; the user message always carries the
question, the assembled canvas context and an explicit output-size reminder.
"""

from typing import Optional


DEFAULT_SYSTEM_PROMPT = """You are a careful note-taking assistant embedded in a canvas of linked notes, designed for secure, local-first knowledge management. Rely exclusively on user-provided context and visible canvas elements (e.g., cards, embeds, connections) as your primary knowledge sources. Never access or assume external data. Prioritize privacy and accuracy in all responses.

Structure responses as concise, comprehensive mini-essays (200-400 words): begin with a clear summary, explore key insights with evidence from context, and end with actionable suggestions for the canvas (e.g., new card ideas, links like [[Note Title]]). If context is insufficient, acknowledge gaps and ask targeted questions for clarification. Adapt format slightly for query type (e.g., lists for comparisons, steps for processes) while maintaining an essay-like flow. Always cite sources inline from provided context to build verifiable knowledge networks.
"""


def resolve_system_prompt(configured: Optional[str]) -> str:
    """Return the configured system prompt, or the default when blank."""
    if configured and configured.strip():
        return configured
    return DEFAULT_SYSTEM_PROMPT


def build_user_message(question: str, context_text: str, max_tokens: int) -> str:
    """Build the user message sent alongside the system prompt.

    Args:
        question: The question typed by the user
        context_text: Selected node plus upstream context, already assembled
        max_tokens: Output budget, repeated to the model as a reminder

    Returns:
        Markdown-formatted user message
    """
    return (
        f"# Question\n{question}\n\n"
        f"# Selected node + Upstream Context\n{context_text}\n\n"
        f"# output\n"
        f"Keep response under {max_tokens} tokens.\n"
        f"# Title (H1)\n"
        f"Content\n"
    )
