import pytest

from agent_loop.loop_detector import LoopDetector, normalize_params

# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_normalize_params_ignores_key_order():
    assert normalize_params({"a": 1, "b": [1, 2]}) == normalize_params({"b": [1, 2], "a": 1})


def test_normalize_params_treats_none_as_empty():
    assert normalize_params(None) == normalize_params({})


# ---------------------------------------------------------------------------
# Blocking
# ---------------------------------------------------------------------------


def test_third_identical_call_in_window_is_blocked(clock):
    detector = LoopDetector(clock=clock)

    assert detector.should_block("calculate", {"expression": "2+3*4"}) is False
    clock.advance(1)
    assert detector.should_block("calculate", {"expression": "2+3*4"}) is False
    clock.advance(1)
    assert detector.should_block("calculate", {"expression": "2+3*4"}) is True


def test_blocked_calls_are_still_recorded(clock):
    detector = LoopDetector(clock=clock)
    for _ in range(4):
        detector.should_block("get_current_time", {})
    assert len(detector) == 4
    assert detector.should_block("get_current_time", {}) is True


def test_different_params_do_not_accumulate(clock):
    detector = LoopDetector(clock=clock)
    assert detector.should_block("create_file", {"path": "a.txt", "content": "x"}) is False
    assert detector.should_block("create_file", {"path": "b.txt", "content": "x"}) is False
    assert detector.should_block("create_file", {"path": "a.txt", "content": "y"}) is False


def test_same_params_on_other_tool_do_not_accumulate(clock):
    detector = LoopDetector(clock=clock)
    assert detector.should_block("get_current_time", {}) is False
    assert detector.should_block("list_files", {}) is False
    assert detector.should_block("get_current_time", {}) is False


def test_alternating_params_never_block(clock):
    detector = LoopDetector(clock=clock)
    for i in range(20):
        expression = "2+3*4" if i % 2 == 0 else "3+3*4"
        assert detector.should_block("calculate", {"expression": expression}) is False


def test_other_tools_between_identical_calls_do_not_reset(clock):
    detector = LoopDetector(clock=clock)
    assert detector.should_block("calculate", {"expression": "1+1"}) is False
    assert detector.should_block("get_current_time", {}) is False
    assert detector.should_block("calculate", {"expression": "1+1"}) is False
    assert detector.should_block("list_files", {}) is False
    assert detector.should_block("calculate", {"expression": "1+1"}) is True


def test_repeat_succeeds_after_window(clock):
    detector = LoopDetector(clock=clock)
    detector.should_block("get_current_time", {})
    detector.should_block("get_current_time", {})

    clock.advance(6)

    assert detector.should_block("get_current_time", {}) is False


def test_explicit_now_overrides_clock(clock):
    detector = LoopDetector(clock=clock)
    detector.should_block("calculate", {"expression": "1"}, now=0.0)
    detector.should_block("calculate", {"expression": "1"}, now=1.0)
    assert detector.should_block("calculate", {"expression": "1"}, now=10.0) is False


def test_recorded_attempts_count_toward_block(clock):
    detector = LoopDetector(clock=clock)
    detector.record("calculate", {"expression": "1+1"})
    detector.record("calculate", {"expression": "1+1"})
    assert detector.should_block("calculate", {"expression": "1+1"}) is True


# ---------------------------------------------------------------------------
# History maintenance
# ---------------------------------------------------------------------------


def test_history_older_than_max_age_is_pruned(clock):
    detector = LoopDetector(clock=clock)
    detector.should_block("get_current_time", {})
    detector.should_block("calculate", {"expression": "1"})

    clock.advance(61)
    detector.should_block("get_current_time", {})

    assert len(detector) == 1
    assert detector.history[0].timestamp == clock.now


def test_reset_clears_history(clock):
    detector = LoopDetector(clock=clock)
    detector.should_block("get_current_time", {})
    detector.should_block("get_current_time", {})
    detector.reset()
    assert len(detector) == 0
    assert detector.should_block("get_current_time", {}) is False


def test_history_is_a_copy(clock):
    detector = LoopDetector(clock=clock)
    detector.should_block("get_current_time", {})
    detector.history.clear()
    assert len(detector) == 1


def test_window_longer_than_max_age_is_rejected():
    with pytest.raises(ValueError, match="cannot exceed"):
        LoopDetector(window=120, max_age=60)


def test_custom_limit(clock):
    detector = LoopDetector(max_identical=2, clock=clock)
    assert detector.should_block("calculate", {"expression": "1"}) is False
    assert detector.should_block("calculate", {"expression": "1"}) is True
