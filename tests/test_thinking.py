"""Tests for routing stdout into thoughts and message text."""

from autohand_acp.thinking import TEXT, THOUGHT, PatternClassifier, StdoutRouter


class TestPatternClassifier:
    def test_default_patterns(self) -> None:
        classifier = PatternClassifier()
        assert classifier.is_thinking("Let me think about this")
        assert classifier.is_thinking("  analyzing the repository")
        assert classifier.is_thinking("I need to check the tests")
        assert not classifier.is_thinking("Here is the fix.")
        assert not classifier.is_thinking("We need to talk")

    def test_custom_patterns(self) -> None:
        classifier = PatternClassifier([r"^hmm"])
        assert classifier.is_thinking("Hmm, odd")
        assert not classifier.is_thinking("Let me think")


class TestStdoutRouter:
    def test_plain_text(self) -> None:
        router = StdoutRouter()
        assert router.feed("The answer is 4.\n") == [(TEXT, "The answer is 4.\n")]

    def test_empty_chunk(self) -> None:
        assert StdoutRouter().feed("") == []

    def test_heuristic_thought(self) -> None:
        router = StdoutRouter()
        assert router.feed("Considering options...\n") == [(THOUGHT, "Considering options...\n")]

    def test_thinking_block_across_chunks(self) -> None:
        router = StdoutRouter()
        assert router.feed("<thinking>first part ") == []
        assert router.feed("second part") == []
        assert router.feed("</thinking>") == [(THOUGHT, "first part second part")]
        assert router.feed("Result\n") == [(TEXT, "Result\n")]

    def test_empty_thinking_block_is_dropped(self) -> None:
        router = StdoutRouter()
        assert router.feed("<thinking>  </thinking>") == []

    def test_flush_emits_unterminated_block(self) -> None:
        router = StdoutRouter()
        router.feed("<thinking>never closed")
        assert router.flush() == [(THOUGHT, "never closed")]
        assert router.flush() == []

    def test_custom_classifier(self) -> None:
        class Never:
            def is_thinking(self, text: str) -> bool:
                return False

        router = StdoutRouter(Never())
        assert router.feed("Let me think") == [(TEXT, "Let me think")]
