"""Tests for prompt templates."""

from __future__ import annotations

import pytest

from notecopilot.ai import prompts


def test_system_prompt_falls_back_to_default():
    assert prompts.system_prompt(None) == prompts.DEFAULT_SYSTEM_PROMPT
    assert prompts.system_prompt("   ") == prompts.DEFAULT_SYSTEM_PROMPT
    assert prompts.system_prompt(" Be terse. ") == "Be terse."


def test_grounding_prompt_embeds_context():
    content = prompts.grounding_prompt("\n[Paris.md #1]\nParis is the capital of France.\n")

    assert "[Paris.md #1]\nParis is the capital of France.\n---- END EXCERPTS ----" in content


@pytest.mark.parametrize(
    "builder",
    [
        prompts.fix_grammar_spelling_prompt,
        prompts.summarize_prompt,
        prompts.toc_prompt,
        prompts.glossary_prompt,
        prompts.simplify_prompt,
        prompts.emojify_prompt,
        prompts.remove_urls_prompt,
        prompts.rewrite_tweet_prompt,
        prompts.rewrite_tweet_thread_prompt,
        prompts.rewrite_shorter_prompt,
        prompts.rewrite_longer_prompt,
        prompts.eli5_prompt,
        prompts.rewrite_press_release_prompt,
    ],
)
def test_selection_prompts_end_with_selection(builder):
    content = builder("The quick brown fox.")

    assert content.endswith("\n\nThe quick brown fox.")


def test_translate_and_tone_need_a_parameter():
    assert "into French" in prompts.translate_prompt("Hello", "French")
    assert "friendly tone" in prompts.change_tone_prompt("Hello", "Friendly")

    with pytest.raises(ValueError):
        prompts.translate_prompt("Hello", None)
    with pytest.raises(ValueError):
        prompts.change_tone_prompt("Hello", "  ")


def test_custom_prompt_placeholder_or_append():
    assert prompts.custom_prompt("text", "Wrap {} in quotes") == "Wrap text in quotes"
    assert prompts.custom_prompt("text", "Summarize this") == "Summarize this\n\ntext"

    with pytest.raises(ValueError):
        prompts.custom_prompt("text", "")
