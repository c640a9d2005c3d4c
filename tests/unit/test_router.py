"""
Unit tests for the thinking/response router.
"""

from pyllm.decoding import (
    GenerationSession,
    StreamRouter,
    ThinkingMode,
    ThinkingPhase,
    TokenVocabulary,
    finish,
    initial_state,
    step,
)


def feed(state, *chunks):
    thinking, response = [], []
    for chunk in chunks:
        state, t, r = step(state, chunk)
        thinking += t
        response += r
    state, t, r = finish(state)
    return state, "".join(thinking + t), "".join(response + r)


class TestRouterState:
    """Test the pure step/finish state machine."""

    def test_initial_phase(self):
        """Test the starting phase for each mode."""
        assert initial_state(ThinkingMode.NONE, "<think>", "</think>").phase is ThinkingPhase.DISABLED
        assert initial_state(ThinkingMode.ENABLED, "<think>", "</think>").phase is ThinkingPhase.SEARCHING_FOR_START
        assert initial_state(ThinkingMode.ENABLED).phase is ThinkingPhase.IN_RESPONSE

    def test_hold_covers_longest_marker(self):
        """Test that the hold is at least as long as the markers."""
        assert initial_state(ThinkingMode.ENABLED, "<think>", "</think>").hold == 8
        assert initial_state(ThinkingMode.ENABLED, "<think>", "</think>", hold=12).hold == 12

    def test_split_thinking_and_response(self):
        """Test routing a complete thinking block."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        state, thinking, response = feed(state, "<think>reasoning</think>answer")

        assert thinking == "reasoning"
        assert response == "answer"
        assert state.phase is ThinkingPhase.IN_RESPONSE

    def test_markers_split_across_chunks(self):
        """Test markers arriving in pieces."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        _, thinking, response = feed(state, "<thi", "nk>abc", "defghijk</th", "ink>xy")

        assert thinking == "abcdefghijk"
        assert response == "xy"

    def test_text_before_start_marker_goes_to_response(self):
        """Test preamble text before the thinking block."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        _, thinking, response = feed(state, "hi <think>hmm</think> there")

        assert thinking == "hmm"
        assert response == "hi  there"

    def test_no_marker_is_all_response(self):
        """Test output without any thinking block."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        _, thinking, response = feed(state, "just an answer")

        assert thinking == ""
        assert response == "just an answer"

    def test_disabled_passes_markers_through(self):
        """Test that markers are plain text when thinking is disabled."""
        state = initial_state(ThinkingMode.NONE, "<think>", "</think>")

        _, thinking, response = feed(state, "<think>hi</think>")

        assert thinking == ""
        assert response == "<think>hi</think>"

    def test_response_never_returns_to_thinking(self):
        """Test that a second start marker after the response is plain text."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        _, thinking, response = feed(state, "<think>a</think>b<think>c")

        assert thinking == "a"
        assert response == "b<think>c"

    def test_unterminated_thinking(self):
        """Test that pending text inside thinking flushes to thinking."""
        state = initial_state(ThinkingMode.ENABLED, "<think>", "</think>")

        state, thinking, response = feed(state, "<think>still going")

        assert thinking == "still going"
        assert response == ""
        assert state.phase is ThinkingPhase.IN_THINKING

    def test_finish_strips_emitted_stop_text(self):
        """Test that stop-sequence text already emitted is removed at the end."""
        state = initial_state(ThinkingMode.NONE, hold=2)
        state, _, response = step(state, "hello##")

        _, _, tail = finish(state, strip_suffix="##")

        assert "".join(response + tail) == "hello"

    def test_finish_keeps_text_that_only_looks_like_stop(self):
        """Test that a partial match of the stop text is kept."""
        state = initial_state(ThinkingMode.NONE, hold=2)
        state, _, response = step(state, "C#")

        _, _, tail = finish(state, strip_suffix="##")

        assert "".join(response + tail) == "C#"


class TestStreamRouter:
    """Test routing a live session."""

    def make_router(self, engine, greedy, mode=ThinkingMode.ENABLED, stop=None):
        session = GenerationSession(engine, TokenVocabulary(engine), greedy, stop_sequence=stop)
        assert session.prepare_context("question")
        return StreamRouter(session, mode, "<think>", "</think>"), session

    def test_route_channels(self, make_engine, greedy):
        """Test that both channels receive their text and close."""
        engine = make_engine(scripts=["<think>reasoning</think>answer"])
        router, _ = self.make_router(engine, greedy)

        thinking, response = router.route()

        assert thinking.read() == "reasoning"
        assert response.read() == "answer"
        router.join(timeout=5)
        assert not router.failed
        assert router.thinking_text == "reasoning"
        assert router.response_text == "answer"

    def test_events_keep_production_order(self, make_engine, greedy):
        """Test that the merged channel interleaves both streams in order."""
        engine = make_engine(scripts=["<think>reasoning</think>answer"])
        router, _ = self.make_router(engine, greedy)

        router.run()
        events = list(router.events)

        kinds = [kind for kind, _ in events]
        assert kinds == sorted(kinds, key=lambda kind: kind == "response")
        assert "".join(c for k, c in events if k == "thinking") == "reasoning"
        assert "".join(c for k, c in events if k == "response") == "answer"
        assert router.events.closed

    def test_thinking_closes_before_response_ends(self, make_engine, greedy):
        """Test that the thinking channel closes at the end marker."""
        engine = make_engine(scripts=["<think>hmm</think>answer"])
        router, _ = self.make_router(engine, greedy)

        router.run()

        assert router.thinking.closed
        assert router.response.closed

    def test_eos_inside_thinking_injects_end_marker(self, make_engine, greedy):
        """Test that an early end of sequence closes the thinking block and continues."""
        engine = make_engine(scripts=[
            "<think>reasoning",
            "<think>reasoning</think>\nanswer",
        ])
        router, _ = self.make_router(engine, greedy)

        router.run()

        assert router.thinking_text == "reasoning"
        assert router.response_text == "answer"
        assert engine.generated_text() == "<think>reasoning</think>\nanswer"

    def test_first_token_is_never_eos(self, make_engine, greedy):
        """Test that generation produces at least one token."""
        engine = make_engine(scripts=[""])
        router, session = self.make_router(engine, greedy, mode=ThinkingMode.NONE)

        router.run()

        assert session.tokens_generated >= 1

    def test_stop_sequence_is_removed(self, make_engine, greedy):
        """Test that the stop sequence ends generation and never reaches the output."""
        engine = make_engine(scripts=["hello###junk"])
        router, session = self.make_router(engine, greedy, mode=ThinkingMode.NONE, stop="###")

        router.run()

        assert router.response_text == "hello"
        assert session.stopped_by_sequence
        assert engine.generated_text() == "hello##"

    def test_special_stop_token(self, make_engine, greedy):
        """Test a stop sequence that is a single special token."""
        engine = make_engine(scripts=["hi<|im_end|>more"])
        router, session = self.make_router(engine, greedy, mode=ThinkingMode.NONE, stop="<|im_end|>")

        router.run()

        assert router.response_text == "hi"
        assert session.stopped_by_sequence

    def test_decode_failure_sets_error(self, make_engine, greedy):
        """Test that a decode failure is reported and channels still close."""
        engine = make_engine(scripts=["answer"], fail_decode_at=2)
        router, _ = self.make_router(engine, greedy, mode=ThinkingMode.NONE)

        router.run()

        assert router.failed
        assert router.response.closed
        assert router.thinking.closed

    def test_single_token_stop_keeps_lookalike_text(self, make_engine, greedy):
        """Test that text resembling the start of a one-token stop sequence survives."""
        engine = make_engine(scripts=["a <<|im_end|>"])
        router, session = self.make_router(engine, greedy, mode=ThinkingMode.NONE, stop="<|im_end|>")

        router.run()

        assert session.stopped_by_sequence
        assert engine.generated_text() == "a <"
        assert router.response_text == "a <"
