"""Prompt templates for chat, grounding and selection commands."""

from __future__ import annotations

from typing import Callable

PromptBuilder = Callable[[str, "str | None"], str]

DEFAULT_SYSTEM_PROMPT = (
    "You are Note Copilot, a helpful assistant that lives inside a note-taking app. "
    "Answer clearly and concisely. Use Markdown when it helps readability. "
    "If you do not know the answer, say so instead of guessing."
)

GROUNDING_TEMPLATE = (
    "Use the following excerpts from the user's note to answer the question. "
    "If the excerpts do not contain the answer, say that the note does not cover it.\n\n"
    "---- NOTE EXCERPTS ----\n{context}\n---- END EXCERPTS ----"
)

CUSTOM_PROMPT_PLACEHOLDER = "{}"
_RETURN_ONLY = "Return only the result, without any preamble or explanation."


def system_prompt(user_prompt: str | None = None) -> str:
    """Return the configured system prompt or the built-in default."""

    candidate = (user_prompt or "").strip()
    return candidate or DEFAULT_SYSTEM_PROMPT


def grounding_prompt(context: str) -> str:
    return GROUNDING_TEMPLATE.format(context=context.strip())


def _wrap(instruction: str, selected_text: str) -> str:
    return f"{instruction}\n\n{selected_text}"


def fix_grammar_spelling_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Fix the grammar and spelling of the following text. Keep the original meaning, "
        f"language and formatting. {_RETURN_ONLY}",
        selected_text,
    )


def summarize_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap("Summarize the following text into bullet points. " + _RETURN_ONLY, selected_text)


def toc_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Generate a Markdown table of contents for the following text, using nested bullets "
        "that mirror its heading structure. " + _RETURN_ONLY,
        selected_text,
    )


def glossary_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Generate a glossary of the important terms, concepts and phrases in the following text. "
        "Format each entry as '[Term]: [Definition]' on its own line, sorted alphabetically. "
        + _RETURN_ONLY,
        selected_text,
    )


def simplify_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Rewrite the following text so that it is easy to understand, using short sentences "
        "and plain words. " + _RETURN_ONLY,
        selected_text,
    )


def emojify_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Add fitting emojis to the following text without changing its wording. " + _RETURN_ONLY,
        selected_text,
    )


def remove_urls_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Remove every URL from the following text and leave everything else untouched. " + _RETURN_ONLY,
        selected_text,
    )


def rewrite_tweet_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Rewrite the following text as a single tweet of at most 280 characters, in the same "
        "language as the text. " + _RETURN_ONLY,
        selected_text,
    )


def rewrite_tweet_thread_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Rewrite the following text as a thread of tweets, each at most 240 characters, "
        "separated by lines containing only '---'. Keep the language of the text. " + _RETURN_ONLY,
        selected_text,
    )


def rewrite_shorter_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap("Rewrite the following text to make it about half as long. " + _RETURN_ONLY, selected_text)


def rewrite_longer_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap("Rewrite the following text to make it about twice as long. " + _RETURN_ONLY, selected_text)


def eli5_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap(
        "Explain the following text in simple terms, as if to a five-year-old. " + _RETURN_ONLY,
        selected_text,
    )


def rewrite_press_release_prompt(selected_text: str, _parameter: str | None = None) -> str:
    return _wrap("Rewrite the following text as a press release. " + _RETURN_ONLY, selected_text)


def translate_prompt(selected_text: str, language: str | None = None) -> str:
    target = (language or "").strip()
    if not target:
        raise ValueError("A target language is required to translate a selection")
    return _wrap(
        f"Translate the following text into {target}. Keep the formatting. " + _RETURN_ONLY,
        selected_text,
    )


def change_tone_prompt(selected_text: str, tone: str | None = None) -> str:
    target = (tone or "").strip()
    if not target:
        raise ValueError("A tone is required to change the tone of a selection")
    return _wrap(
        f"Rewrite the following text in a {target.lower()} tone. Keep its meaning and language. "
        + _RETURN_ONLY,
        selected_text,
    )


def custom_prompt(selected_text: str, template: str | None = None) -> str:
    """Fill a user template: ``{}`` is replaced by the selection, else it is appended."""

    body = (template or "").strip()
    if not body:
        raise ValueError("A custom prompt template is required")
    if CUSTOM_PROMPT_PLACEHOLDER in body:
        return body.replace(CUSTOM_PROMPT_PLACEHOLDER, selected_text)
    return _wrap(body, selected_text)


__all__ = [
    "CUSTOM_PROMPT_PLACEHOLDER",
    "DEFAULT_SYSTEM_PROMPT",
    "GROUNDING_TEMPLATE",
    "PromptBuilder",
    "change_tone_prompt",
    "custom_prompt",
    "eli5_prompt",
    "emojify_prompt",
    "fix_grammar_spelling_prompt",
    "glossary_prompt",
    "grounding_prompt",
    "remove_urls_prompt",
    "rewrite_longer_prompt",
    "rewrite_press_release_prompt",
    "rewrite_shorter_prompt",
    "rewrite_tweet_prompt",
    "rewrite_tweet_thread_prompt",
    "simplify_prompt",
    "summarize_prompt",
    "system_prompt",
    "toc_prompt",
    "translate_prompt",
]
