"""
Chat templates - turn an input and a history into a model prompt.

A template is a set of (prefix, suffix) pairs per role plus a stop
sequence. Reasoning templates also carry the markers that delimit the
model's thinking block.

Presets:
    - chatml: <|im_start|>/<|im_end|> (Qwen, Hermes, ...)
    - chatml_thinking: ChatML with <think>/</think> markers
    - alpaca: ### Instruction / ### Response
    - llama: Llama 2 [INST] / <<SYS>>
    - mistral: Mistral [INST]

Usage:
    ```python
    from pyllm.chat import Template

    template = Template.chatml("You are a helpful assistant.")
    prompt = template.preprocess("Hi!", history.entries)
    ```
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from pyllm.chat.history import Chat, Role

Attachment = Tuple[str, str]


@dataclass(frozen=True)
class Template:
    """
    Attributes:
        prefix: Text at the very start of the prompt
        system: (prefix, suffix) around the system prompt
        user: (prefix, suffix) around user messages
        bot: (prefix, suffix) around bot messages
        stop_sequence: Text that ends a bot message
        system_prompt: System prompt; None omits the system block
        should_drop_last: Drop the last character of the trailing bot prefix
        thinking_start: Marker opening the thinking block
        thinking_end: Marker closing the thinking block
    """
    prefix: str = ""
    system: Attachment = ("", "")
    user: Attachment = ("", "")
    bot: Attachment = ("", "")
    stop_sequence: Optional[str] = None
    system_prompt: Optional[str] = None
    should_drop_last: bool = False
    thinking_start: Optional[str] = None
    thinking_end: Optional[str] = None

    def preprocess(self, input: str, history: Sequence[Chat] = ()) -> str:
        processed = self.prefix

        if self.system_prompt is not None:
            processed += f"{self.system[0]}{self.system_prompt}{self.system[1]}"

        for chat in history:
            if chat.role is Role.USER:
                processed += f"{self.user[0]}{chat.content}{self.user[1]}"
            else:
                processed += f"{self.bot[0]}{chat.content}{self.bot[1]}"

        processed += f"{self.user[0]}{input}{self.user[1]}"

        if self.should_drop_last:
            processed += self.bot[0][:-1]
        else:
            processed += self.bot[0]

        return processed

    @classmethod
    def chatml(cls, system_prompt: Optional[str] = None) -> "Template":
        return cls(
            system=("<|im_start|>system\n", "<|im_end|>\n"),
            user=("<|im_start|>user\n", "<|im_end|>\n"),
            bot=("<|im_start|>assistant\n", "<|im_end|>\n"),
            stop_sequence="<|im_end|>",
            system_prompt=system_prompt
        )

    @classmethod
    def chatml_thinking(cls, system_prompt: Optional[str] = None) -> "Template":
        return cls(
            system=("<|im_start|>system\n", "<|im_end|>\n"),
            user=("<|im_start|>user\n", "<|im_end|>\n"),
            bot=("<|im_start|>assistant\n", "<|im_end|>\n"),
            stop_sequence="<|im_end|>",
            system_prompt=system_prompt,
            thinking_start="<think>",
            thinking_end="</think>"
        )

    @classmethod
    def alpaca(cls, system_prompt: Optional[str] = None) -> "Template":
        return cls(
            system=("", "\n\n"),
            user=("### Instruction:\n", "\n\n"),
            bot=("### Response:\n", "\n\n"),
            stop_sequence="###",
            system_prompt=system_prompt
        )

    @classmethod
    def llama(cls, system_prompt: Optional[str] = None) -> "Template":
        return cls(
            prefix="<s>[INST] ",
            system=("<<SYS>>\n", "\n<</SYS>>\n\n"),
            user=("", " [/INST]"),
            bot=(" ", "</s><s>[INST] "),
            stop_sequence="</s>",
            system_prompt=system_prompt,
            should_drop_last=True
        )

    @classmethod
    def mistral(cls) -> "Template":
        return cls(
            prefix="<s>",
            user=("[INST] ", " [/INST]"),
            bot=("", "</s> "),
            stop_sequence="</s>"
        )

    @classmethod
    def preset(cls, name: str, system_prompt: Optional[str] = None) -> "Template":
        """
        Look up a preset by name (used by the CLI).

        Raises:
            ValueError: If the preset does not exist
        """
        if name == "mistral":
            return cls.mistral()
        factories = {
            "chatml": cls.chatml,
            "chatml_thinking": cls.chatml_thinking,
            "alpaca": cls.alpaca,
            "llama": cls.llama,
        }
        if name not in factories:
            raise ValueError(f"Unknown template {name!r}; choose from {PRESETS}")
        return factories[name](system_prompt)


PRESETS = ("chatml", "chatml_thinking", "alpaca", "llama", "mistral")
