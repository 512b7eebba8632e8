"""Selection commands dispatched against the conversation controller."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Mapping

from ..ai import prompts
from ..ai.ai_types import ModelOverrides
from ..errors import CopilotError, InputError
from ..services.telemetry import emit as telemetry_emit
from .message_model import ChatLog, ChatMessage

if TYPE_CHECKING:  # pragma: no cover
    from ..ai.orchestration.controller import ConversationController, GenerationHandle, Notifier

LOGGER = logging.getLogger(__name__)

TOKEN_COUNT_TEMPLATE = "The selected text contains {words} words and {tokens} tokens."
TWEET_TEMPERATURE = 0.2


class CommandKind(str, Enum):
    """How a binding turns a selection into work."""

    GENERATE = "generate"
    COUNT_TOKENS = "count_tokens"


@dataclass(slots=True, frozen=True)
class CommandBinding:
    """Table entry describing one selection command."""

    prompt_builder: prompts.PromptBuilder | None = None
    temperature_override: float | None = None
    visible_in_log: bool = False
    kind: CommandKind = CommandKind.GENERATE
    requires_parameter: bool = False

    def overrides(self) -> ModelOverrides | None:
        if self.temperature_override is None:
            return None
        return ModelOverrides(temperature=self.temperature_override)


@dataclass(slots=True, frozen=True)
class TriggerEvent:
    """A host-originated request to run a named command on a selection."""

    name: str
    selected_text: str
    parameter: str | None = None


class CommandDispatcher:
    """Routes trigger events through an explicit command table.

    Visible prompts are appended to the chat log synchronously inside
    :meth:`dispatch`, before anything is awaited, so log order always
    matches trigger order.
    """

    def __init__(
        self,
        controller: "ConversationController",
        chat_log: ChatLog,
        *,
        notifier: "Notifier | None" = None,
        bindings: Mapping[str, CommandBinding] | None = None,
    ) -> None:
        self._controller = controller
        self._chat_log = chat_log
        self._notifier = notifier
        self._bindings: Dict[str, CommandBinding] = dict(default_bindings() if bindings is None else bindings)

    @property
    def names(self) -> list[str]:
        return sorted(self._bindings)

    def binding(self, name: str) -> CommandBinding:
        return self._bindings[name]

    def register(self, name: str, binding: CommandBinding, *, replace: bool = False) -> None:
        if not name:
            raise ValueError("Command name must be non-empty")
        if name in self._bindings and not replace:
            raise ValueError(f"Command '{name}' is already registered")
        self._bindings[name] = binding

    def dispatch(
        self,
        name: str,
        selected_text: str,
        parameter: str | None = None,
    ) -> "GenerationHandle | None":
        """Run command *name* and return its generation handle, if any.

        Empty selections produce a notice and return ``None``. Unknown
        command names raise :class:`KeyError`.
        """

        binding = self._bindings[name]
        if not selected_text or not selected_text.strip():
            self._report(InputError.empty_selection())
            return None

        telemetry_emit("command.triggered", {"command": name, "chars": len(selected_text)})
        if binding.kind is CommandKind.COUNT_TOKENS:
            self._count_tokens(selected_text)
            return None

        if binding.requires_parameter and not (parameter or "").strip():
            self._report(InputError(message=f"Command '{name}' needs a parameter."))
            return None
        if binding.prompt_builder is None:
            raise ValueError(f"Command '{name}' has no prompt builder")
        prompt = binding.prompt_builder(selected_text, parameter)
        message = ChatMessage.user(prompt, visible=binding.visible_in_log)
        self._chat_log.append(message)
        LOGGER.debug("Dispatching %s (visible=%s)", name, binding.visible_in_log)
        return self._controller.send_message(message, (), overrides=binding.overrides())

    async def trigger(
        self,
        name: str,
        selected_text: str,
        parameter: str | None = None,
    ) -> ChatMessage | None:
        """Dispatch a command and wait for its committed reply."""

        handle = self.dispatch(name, selected_text, parameter)
        if handle is None:
            return None
        return await handle.wait()

    async def handle(self, event: TriggerEvent) -> ChatMessage | None:
        return await self.trigger(event.name, event.selected_text, event.parameter)

    def _count_tokens(self, selected_text: str) -> ChatMessage:
        words = len(selected_text.split(" "))
        tokens = self._controller.count_tokens(selected_text)
        message = ChatMessage.assistant(TOKEN_COUNT_TEMPLATE.format(words=words, tokens=tokens))
        return self._chat_log.append(message)

    def _report(self, error: CopilotError) -> None:
        if self._notifier is None:
            LOGGER.warning("Notice: %s", error.as_notice())
            return
        self._notifier(error)


def _generate(
    builder: Callable[..., str],
    *,
    temperature: float | None = None,
    requires_parameter: bool = False,
) -> CommandBinding:
    return CommandBinding(
        prompt_builder=builder,
        temperature_override=temperature,
        requires_parameter=requires_parameter,
    )


def default_bindings() -> Dict[str, CommandBinding]:
    """Return the stock selection command table."""

    return {
        "fixGrammarSpellingSelection": _generate(prompts.fix_grammar_spelling_prompt),
        "summarizeSelection": _generate(prompts.summarize_prompt),
        "tocSelection": _generate(prompts.toc_prompt),
        "glossarySelection": _generate(prompts.glossary_prompt),
        "simplifySelection": _generate(prompts.simplify_prompt),
        "emojifySelection": _generate(prompts.emojify_prompt),
        "removeUrlsFromSelection": _generate(prompts.remove_urls_prompt),
        "rewriteTweetSelection": _generate(prompts.rewrite_tweet_prompt, temperature=TWEET_TEMPERATURE),
        "rewriteTweetThreadSelection": _generate(
            prompts.rewrite_tweet_thread_prompt, temperature=TWEET_TEMPERATURE
        ),
        "rewriteShorterSelection": _generate(prompts.rewrite_shorter_prompt),
        "rewriteLongerSelection": _generate(prompts.rewrite_longer_prompt),
        "eli5Selection": _generate(prompts.eli5_prompt),
        "rewritePressReleaseSelection": _generate(prompts.rewrite_press_release_prompt),
        "translateSelection": _generate(prompts.translate_prompt, requires_parameter=True),
        "changeToneSelection": _generate(prompts.change_tone_prompt, requires_parameter=True),
        "applyCustomPromptSelection": _generate(prompts.custom_prompt, requires_parameter=True),
        "countTokensSelection": CommandBinding(kind=CommandKind.COUNT_TOKENS, visible_in_log=True),
    }


__all__ = [
    "CommandBinding",
    "CommandDispatcher",
    "CommandKind",
    "TOKEN_COUNT_TEMPLATE",
    "TriggerEvent",
    "default_bindings",
]
