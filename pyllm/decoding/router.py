"""
Thinking/Response Stream Router - splits generated text into two channels.

Reasoning models wrap their chain of thought in markers such as
`<think>` ... `</think>`. The router watches the decoded text for those
markers and sends everything inside them to the thinking channel and
everything else to the response channel. The markers themselves are never
emitted.

Markers can be split across tokens, so the router keeps a short pending
buffer (as long as the longest marker) and only flushes text that can no
longer be part of a marker.

Phases:
    DISABLED              no split, everything goes to the response
    SEARCHING_FOR_START   waiting for the start marker
    IN_THINKING           inside the thinking block
    IN_RESPONSE           after the end marker (never goes back)

The state machine itself is the pure `step()` / `finish()` pair over a
RouterState record; StreamRouter drives it from a GenerationSession on a
background thread.

Usage:
    ```python
    router = StreamRouter(session, ThinkingMode.ENABLED, "<think>", "</think>")
    thinking, response = router.route()

    for chunk in thinking:
        print("[thinking]", chunk)
    for chunk in response:
        print(chunk, end="")
    ```
"""

import logging
import queue
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from pyllm.decoding.session import GenerationSession
from pyllm.errors import DecodeError, LLMError

logger = logging.getLogger(__name__)


class ThinkingMode(Enum):
    NONE = "none"
    ENABLED = "enabled"


class ThinkingPhase(Enum):
    DISABLED = "disabled"
    SEARCHING_FOR_START = "searching_for_start"
    IN_THINKING = "in_thinking"
    IN_RESPONSE = "in_response"


@dataclass(frozen=True)
class RouterState:
    """
    Attributes:
        phase: Current phase
        pending: Text held back because it may start a marker
        start_marker: Marker opening the thinking block ("" if none)
        end_marker: Marker closing the thinking block ("" if none)
        hold: Maximum length of `pending`
    """
    phase: ThinkingPhase
    pending: str = ""
    start_marker: str = ""
    end_marker: str = ""
    hold: int = 0


Chunks = List[str]


def initial_state(
    thinking_mode: ThinkingMode,
    start_marker: Optional[str] = None,
    end_marker: Optional[str] = None,
    hold: int = 0
) -> RouterState:
    """
    Starting state for a generation.

    Args:
        thinking_mode: NONE disables the split
        start_marker: Thinking start marker; without one output goes
            straight to the response
        end_marker: Thinking end marker
        hold: Extra characters to hold back (e.g. for stop-sequence removal)
    """
    start_marker = start_marker or ""
    end_marker = end_marker or ""

    if thinking_mode is ThinkingMode.NONE:
        phase = ThinkingPhase.DISABLED
    elif start_marker:
        phase = ThinkingPhase.SEARCHING_FOR_START
    else:
        phase = ThinkingPhase.IN_RESPONSE

    return RouterState(
        phase=phase,
        start_marker=start_marker,
        end_marker=end_marker,
        hold=max(len(start_marker), len(end_marker), hold)
    )


def step(state: RouterState, text: str) -> Tuple[RouterState, Chunks, Chunks]:
    """
    Feed decoded text into the router.

    Returns:
        (new state, thinking chunks, response chunks); empty chunks are
        never returned
    """
    thinking: Chunks = []
    response: Chunks = []
    pending = state.pending + text
    phase = state.phase

    while True:
        if phase is ThinkingPhase.SEARCHING_FOR_START:
            index = pending.find(state.start_marker)
            if index < 0:
                break
            _append(response, pending[:index])
            pending = pending[index + len(state.start_marker):]
            phase = ThinkingPhase.IN_THINKING
            logger.debug("Thinking block started")
        elif phase is ThinkingPhase.IN_THINKING and state.end_marker:
            index = pending.find(state.end_marker)
            if index < 0:
                break
            _append(thinking, pending[:index])
            pending = pending[index + len(state.end_marker):]
            phase = ThinkingPhase.IN_RESPONSE
            logger.debug("Thinking block ended")
        else:
            break

    # Flush whatever can no longer be part of a marker
    overflow = len(pending) - state.hold
    if overflow > 0:
        target = thinking if phase is ThinkingPhase.IN_THINKING else response
        _append(target, pending[:overflow])
        pending = pending[overflow:]

    return replace(state, phase=phase, pending=pending), thinking, response


def finish(state: RouterState, strip_suffix: Optional[str] = None) -> Tuple[RouterState, Chunks, Chunks]:
    """
    Flush pending text at end of generation.

    Args:
        strip_suffix: Stop-sequence text that was already emitted; dropped
            when the pending text ends with exactly this string
    """
    pending = state.pending
    if strip_suffix and pending.endswith(strip_suffix):
        pending = pending[:-len(strip_suffix)]

    thinking: Chunks = []
    response: Chunks = []
    _append(thinking if state.phase is ThinkingPhase.IN_THINKING else response, pending)
    return replace(state, pending=""), thinking, response


def end_thinking(state: RouterState) -> Tuple[RouterState, Chunks]:
    """Force the IN_THINKING -> IN_RESPONSE transition, flushing pending text to thinking."""
    thinking: Chunks = []
    _append(thinking, state.pending)
    return replace(state, phase=ThinkingPhase.IN_RESPONSE, pending=""), thinking


def _append(chunks: Chunks, text: str) -> None:
    if text:
        chunks.append(text)


class TokenChannel:
    """
    Unbounded single-producer channel.

    Iterating yields items until the channel is closed. Items are text
    chunks, or (kind, chunk) pairs on the merged events channel.
    """

    _CLOSED = object()

    def __init__(self, name: str):
        self.name = name
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()

    def put(self, item) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} channel is closed")
            self._queue.put(item)

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                self._queue.put(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator:
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                # Leave the sentinel for other readers
                self._queue.put(item)
                return
            yield item

    def read(self) -> str:
        """Block until closed and return everything as one string."""
        return "".join(self)


class StreamRouter:
    """
    Drives a GenerationSession and routes its output into two channels.

    Attributes:
        session: Prepared session to pull tokens from
        thinking: Channel for text inside the thinking block
        response: Channel for everything else
        events: Both streams merged in production order, as
            ("thinking", chunk) and ("response", chunk) pairs
        thinking_text: Everything routed to `thinking`
        response_text: Everything routed to `response`
        error: Exception that ended the generation, if any
    """

    def __init__(
        self,
        session: GenerationSession,
        thinking_mode: ThinkingMode = ThinkingMode.NONE,
        start_marker: Optional[str] = None,
        end_marker: Optional[str] = None
    ):
        self.session = session
        self.thinking_mode = thinking_mode
        self.start_marker = start_marker
        self.end_marker = end_marker

        self.thinking = TokenChannel("thinking")
        self.response = TokenChannel("response")
        self.events = TokenChannel("events")
        self.thinking_text = ""
        self.response_text = ""
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def route(self) -> Tuple[TokenChannel, TokenChannel]:
        """Start generating on a background thread and return (thinking, response)."""
        self._thread = threading.Thread(target=self.run, name="pyllm-router", daemon=True)
        self._thread.start()
        return self.thinking, self.response

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def close(self) -> None:
        self.thinking.close()
        self.response.close()
        self.events.close()

    def run(self) -> None:
        """Generate until end of sequence, routing text as it is decoded."""
        try:
            self._run()
        except LLMError as e:
            logger.error(f"Generation failed: {e}")
            self.error = e
        finally:
            self.close()

    def _run(self) -> None:
        session = self.session
        vocabulary = session.vocabulary
        decoder = vocabulary.stream_decoder(special=True)

        stop_text = session.stop_sequence or ""
        state = initial_state(
            self.thinking_mode,
            self.start_marker,
            self.end_marker,
            hold=max(len(stop_text) - 1, 0)
        )

        end_tokens: List[int] = []
        if self.end_marker:
            end_tokens = vocabulary.tokenize(self.end_marker, special=True)
            if vocabulary.newline is not None:
                end_tokens.append(vocabulary.newline)

        first = True
        while True:
            excluding = frozenset([session.eos]) if first else frozenset()
            token = session.predict_next(excluding)
            first = False

            if token != session.eos:
                state, thinking, response = step(state, decoder.feed(token))
                self._emit(thinking, response)
                if state.phase is ThinkingPhase.IN_RESPONSE and not self.thinking.closed:
                    self.thinking.close()
                continue

            state, thinking, response = step(state, decoder.flush())
            self._emit(thinking, response)

            if state.phase is ThinkingPhase.IN_THINKING and end_tokens and session.should_continue:
                logger.info("End of sequence inside thinking block; closing it")
                if not session.inject(end_tokens):
                    raise DecodeError("Failed to inject the thinking end marker")
                state, thinking = end_thinking(state)
                self._emit(thinking, [])
                self.thinking.close()
                continue

            break

        state, thinking, response = finish(state, strip_suffix=session.emitted_stop_text)
        self._emit(thinking, response)

        logger.debug(
            f"Routing done: {len(self.thinking_text)} thinking chars, "
            f"{len(self.response_text)} response chars"
        )

    def _emit(self, thinking: Chunks, response: Chunks) -> None:
        for chunk in thinking:
            self.thinking_text += chunk
            self.thinking.put(chunk)
            self.events.put(("thinking", chunk))

        for chunk in response:
            self.response_text += chunk
            self.response.put(chunk)
            self.events.put(("response", chunk))
