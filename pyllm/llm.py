"""
LLM - chat, streaming, structured output and embeddings over one engine.

This is the class most users need. It ties the pieces together:
    1. Format the input with the chat template and history
    2. Prime the context (dropping old turns if the prompt is too long)
    3. Stream tokens through the thinking/response router, or
       hand the loop to the JSON grammar engine for structured output
    4. Record the turn in the history and the metrics in the monitor

Only one generation runs at a time per instance. A second call while one
is in flight does not wait: respond() is ignored, get_completion()
returns "LLM is being used", and the other calls raise LLMBusyError.

Usage:
    ```python
    from pydantic import BaseModel
    from pyllm import LLM, Template, ThinkingMode

    llm = LLM.from_pretrained(
        "models/qwen3-1.7b-q4.gguf",
        template=Template.chatml_thinking("You are concise."),
        thinking_mode=ThinkingMode.ENABLED
    )

    # Chat
    print(llm.respond("What is the capital of France?"))

    # Streaming
    stream = llm.respond_stream("Explain recursion")
    for chunk in stream.thinking:
        print("[thinking]", chunk)
    for chunk in stream.response:
        print(chunk, end="")

    # Structured output
    class City(BaseModel):
        name: str
        population: int

    city = llm.generate("Describe Paris", City).value
    ```
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from pyllm.backends.base import Engine, EngineFactory
from pyllm.chat.history import Chat, ChatHistory
from pyllm.chat.template import Template
from pyllm.decoding.grammar import JSONGrammarEngine
from pyllm.decoding.router import StreamRouter, ThinkingMode, TokenChannel
from pyllm.decoding.sampler import SamplingParams
from pyllm.decoding.session import GenerationSession
from pyllm.decoding.vocabulary import TokenVocabulary
from pyllm.errors import (
    ContextOverflowError,
    EmbeddingsError,
    JSONDecodingError,
    LLMBusyError,
    LLMError,
)
from pyllm.metrics.performance import PerformanceMonitor
from pyllm.schema.parser import SchemaInput, parse_schema
from pyllm.schema.pydantic_adapter import is_pydantic_model
from pyllm.validation.validator import decode_output

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "LLM is being used"
EMPTY_OUTPUT = "..."


@dataclass
class StructuredOutput:
    """
    Result of a structured generation.

    Attributes:
        value: Decoded value (a model instance when a Pydantic model was given)
        raw_json: Generated JSON text
        tokens_generated: Tokens decoded after the prompt
        latency_ms: Wall-clock generation time
    """
    value: Any
    raw_json: str
    tokens_generated: int = 0
    latency_ms: float = 0.0


class StreamingResponse:
    """
    Handle to a streaming generation.

    `thinking` and `response` are independent channels; iterate each to
    receive its chunks. `events()` yields both interleaved as they are
    produced. All close when generation ends.
    """

    def __init__(self, router: StreamRouter):
        self._router = router
        self._done = threading.Event()
        self.text = ""

    @property
    def thinking(self) -> TokenChannel:
        return self._router.thinking

    @property
    def response(self) -> TokenChannel:
        return self._router.response

    @property
    def thinking_text(self) -> str:
        return self._router.thinking_text

    @property
    def error(self) -> Optional[BaseException]:
        return self._router.error

    @property
    def failed(self) -> bool:
        return self._router.failed

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the generation (including history bookkeeping) is done."""
        return self._done.wait(timeout)

    def events(self) -> Iterator[Tuple[str, str]]:
        """Yield ("thinking", chunk) and ("response", chunk) pairs in production order."""
        return iter(self._router.events)

    def _finish(self, text: str) -> None:
        self.text = text
        self._done.set()

    def __iter__(self) -> Iterator[str]:
        return iter(self.response)


class LLM:
    """
    Local LLM client.

    Attributes:
        engine: Engine running the model
        vocabulary: Cached vocabulary of the engine
        session: Generation session over the engine's context
        history: Chat history used by respond()
        monitor: Performance monitor fed by every generation
        thinking_mode: Whether free-form output is split into thinking/response
        output: Response text of the last respond() call
        thinking: Thinking text of the last respond() call
        update: Called with each response delta, then with None at the end
        post_process: Called with the final output of respond()
    """

    def __init__(
        self,
        engine: Engine,
        template: Optional[Template] = None,
        history: Optional[Iterable[Chat]] = None,
        sampling: Optional[SamplingParams] = None,
        history_limit: int = 8,
        max_token_count: int = 2048,
        thinking_mode: ThinkingMode = ThinkingMode.NONE,
        monitor: Optional[PerformanceMonitor] = None
    ):
        """
        Args:
            engine: Loaded engine
            template: Chat template; None sends the input as-is
            history: Initial chat entries
            sampling: Sampling parameters (defaults: top_k=40, top_p=0.95,
                temperature=0.8)
            history_limit: Maximum number of history entries
            max_token_count: Context capacity (capped by the engine's n_ctx)
            thinking_mode: ENABLED splits output on the template's markers
            monitor: Performance monitor to record into
        """
        self.engine = engine
        self.vocabulary = TokenVocabulary(engine)
        self.session = GenerationSession(
            engine,
            self.vocabulary,
            sampling or SamplingParams(),
            max_token_count=max_token_count
        )
        self.history = ChatHistory(history_limit, history)
        self.monitor = monitor or PerformanceMonitor()
        self.thinking_mode = thinking_mode

        self.output = ""
        self.thinking = ""
        self.update: Callable[[Optional[str]], None] = lambda delta: None
        self.post_process: Callable[[str], None] = lambda output: None

        self._template: Optional[Template] = None
        self._lock = threading.Lock()
        self.template = template

        logger.info(
            f"LLM ready: capacity={self.session.capacity}, "
            f"template={'yes' if template else 'none'}, thinking={thinking_mode.value}"
        )

    @classmethod
    def from_pretrained(
        cls,
        model: str,
        backend: Optional[str] = None,
        device: Optional[str] = None,
        template: Optional[Template] = None,
        sampling: Optional[SamplingParams] = None,
        history_limit: int = 8,
        max_token_count: int = 2048,
        thinking_mode: ThinkingMode = ThinkingMode.NONE,
        **kwargs
    ) -> "LLM":
        """
        Load a model and wrap it.

        Args:
            model: GGUF path (llama.cpp) or HuggingFace model id (transformers)
            backend: Force "llamacpp" or "transformers"
            device: Device for the transformers engine
            **kwargs: Engine options (e.g. n_gpu_layers, embedding=True)

        Example:
            ```python
            llm = LLM.from_pretrained("models/mistral-7b.gguf", template=Template.mistral())
            ```
        """
        monitor = PerformanceMonitor()
        monitor.start_model_load()

        engine = EngineFactory.create(
            model,
            backend_type=backend,
            device=device,
            n_ctx=max_token_count,
            **kwargs
        )

        monitor.record_model_load_time()

        return cls(
            engine,
            template=template,
            sampling=sampling,
            history_limit=history_limit,
            max_token_count=max_token_count,
            thinking_mode=thinking_mode,
            monitor=monitor
        )

    @property
    def template(self) -> Optional[Template]:
        return self._template

    @template.setter
    def template(self, template: Optional[Template]) -> None:
        self._template = template
        self.session.set_stop_sequence(template.stop_sequence if template else None)

    @property
    def is_available(self) -> bool:
        return not self._lock.locked()

    def preprocess(self, input: str, history: Iterable[Chat] = ()) -> str:
        if self._template is None:
            return input
        return self._template.preprocess(input, list(history))

    # Free-form generation

    def respond(
        self,
        input: str,
        on_thinking: Optional[Callable[[str], None]] = None,
        on_response: Optional[Callable[[str], None]] = None
    ) -> str:
        """
        Answer `input` in the context of the chat history.

        Never raises for generation failures: an empty or failed generation
        yields "...". While another generation runs the call is ignored and
        returns "".

        Args:
            input: User message
            on_thinking: Called with each thinking chunk
            on_response: Called with each response chunk

        Returns:
            str: Trimmed response text
        """
        try:
            stream = self.respond_stream(input)
        except LLMBusyError:
            logger.warning("respond() ignored: another generation is running")
            return ""

        self.output = ""
        self.thinking = ""

        for kind, chunk in stream.events():
            if kind == "thinking":
                self.thinking += chunk
                if on_thinking is not None:
                    on_thinking(chunk)
            else:
                self.output += chunk
                self.update(chunk)
                if on_response is not None:
                    on_response(chunk)

        stream.wait()
        self.update(None)

        self.output = stream.text
        self.post_process(self.output)
        return self.output

    def respond_stream(self, input: str) -> StreamingResponse:
        """
        Start answering `input` in the background.

        The turn is added to the history once generation completes.

        Raises:
            LLMBusyError: If another generation is running
        """
        if not self._lock.acquire(blocking=False):
            raise LLMBusyError(BUSY_MESSAGE)

        try:
            router = StreamRouter(
                self.session,
                self.thinking_mode,
                self._template.thinking_start if self._template else None,
                self._template.thinking_end if self._template else None
            )
            stream = StreamingResponse(router)
            worker = threading.Thread(
                target=self._run_turn,
                args=(input, router, stream),
                name="pyllm-generation",
                daemon=True
            )
            worker.start()
        except BaseException:
            self._lock.release()
            raise

        return stream

    def _run_turn(self, input: str, router: StreamRouter, stream: StreamingResponse) -> None:
        try:
            self.monitor.start_operation()
            if self._prepare_with_history(input):
                self.monitor.mark_context_prepared()
                router.run()
            else:
                router.error = ContextOverflowError(
                    "Input does not fit in the context even without history",
                    capacity=self.session.capacity
                )
                logger.error(str(router.error))
        except LLMError as e:
            logger.error(f"Generation failed: {e}")
            router.error = e
        finally:
            router.close()
            self.monitor.end_operation(self.session.tokens_generated, self.session.position)

            text = router.response_text.strip() or EMPTY_OUTPUT
            if not router.failed:
                self.history.append_turn(input, text)

            self._lock.release()
            stream._finish(text)

    def _prepare_with_history(self, input: str) -> bool:
        """Prime the context, dropping the oldest turns until the prompt fits."""
        while True:
            self.session.reset_context()
            prompt = self.preprocess(input, self.history.entries)
            if self.session.prepare_context(prompt):
                return True
            if not self.history.drop_oldest_turn():
                return False
            logger.warning(f"Prompt too long; dropped oldest turn ({len(self.history)} entries left)")

    def get_completion(self, input: str) -> str:
        """
        Raw completion of `input`: no template, no history, no thinking split.

        Returns:
            str: Trimmed completion, "..." on failure, or "LLM is being used"
                while another generation runs
        """
        if not self._lock.acquire(blocking=False):
            return BUSY_MESSAGE

        try:
            self.monitor.start_operation()
            self.session.reset_context()
            if not self.session.prepare_context(input):
                logger.error("Completion input does not fit in the context")
                return EMPTY_OUTPUT

            self.monitor.mark_context_prepared()
            router = StreamRouter(self.session, ThinkingMode.NONE)
            router.run()
            return router.response_text.strip() or EMPTY_OUTPUT
        except LLMError as e:
            logger.error(f"Completion failed: {e}")
            return EMPTY_OUTPUT
        finally:
            self.monitor.end_operation(self.session.tokens_generated, self.session.position)
            self._lock.release()

    # Structured generation

    def generate(self, prompt: str, schema: SchemaInput) -> StructuredOutput:
        """
        Generate a value matching `schema`.

        The prompt is formatted with the template (without history). Output
        is produced by the grammar engine, so it is valid by construction;
        it is still validated before being returned.

        Args:
            prompt: Instruction for the model
            schema: JSON Schema text or dict, or a Pydantic model class

        Returns:
            StructuredOutput: `value` is a dict, or a model instance

        Raises:
            LLMBusyError: If another generation is running
            SchemaParseError: If the schema cannot be parsed
            ContextOverflowError: If the prompt does not fit
            DecodeError: If the engine fails
            JSONDecodingError: If the output fails validation
        """
        if not self._lock.acquire(blocking=False):
            raise LLMBusyError(BUSY_MESSAGE)

        start = time.perf_counter()
        try:
            root = parse_schema(schema)
            formatted = self.preprocess(prompt)

            self.monitor.start_operation()
            raw = JSONGrammarEngine(self.session).generate(formatted, root)
            value = decode_output(raw, root)

            if is_pydantic_model(schema):
                try:
                    value = schema.model_validate(root.drop_null_optionals(value))
                except PydanticValidationError as e:
                    raise JSONDecodingError(
                        f"Output does not fit {schema.__name__}",
                        raw_text=raw,
                        schema=root.to_json_schema(),
                        errors=e.errors()
                    ) from e

            return StructuredOutput(
                value=value,
                raw_json=raw,
                tokens_generated=self.session.tokens_generated,
                latency_ms=(time.perf_counter() - start) * 1000
            )
        finally:
            if self.monitor.is_operation_active:
                self.monitor.end_operation(self.session.tokens_generated, self.session.position)
            self._lock.release()

    # Embeddings

    def embeddings(self, text: str) -> List[float]:
        """
        Embedding vector for `text`.

        The context is reset before and after, so embeddings never see chat
        state and chat never sees embedding state.

        Raises:
            EmbeddingsError: If `text` is empty or the engine cannot embed
            LLMBusyError: If another generation is running
        """
        if not text or not text.strip():
            raise EmbeddingsError("Cannot embed empty text")

        if not self._lock.acquire(blocking=False):
            raise LLMBusyError(BUSY_MESSAGE)

        try:
            self.session.reset_context()
            try:
                vector = self.engine.embed(text)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                raise EmbeddingsError(f"Failed to extract embeddings: {e}") from e

            if not vector:
                raise EmbeddingsError("Engine returned an empty embedding")

            return [float(v) for v in vector]
        finally:
            self.session.reset_context()
            self._lock.release()

    # Control

    def stop(self) -> None:
        """Stop the running generation before its next token."""
        self.session.stop()

    def reset_context(self) -> None:
        """Clear the engine context (the history is kept)."""
        self.session.reset_context()

    def clear_history(self) -> None:
        self.history.clear()

    def __repr__(self) -> str:
        return f"LLM(engine={self.engine!r}, history={len(self.history)})"
