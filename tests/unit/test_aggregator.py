"""Unit tests for delta aggregation and image reference scanning."""

import itertools

import pytest

from chatstream.aggregator import DeltaAggregator, find_image_urls, strip_image_refs
from chatstream.errors import ReasoningExhaustedError, UpstreamError
from chatstream.frames import Frame, build_frame

from tests.conftest import delta_payload


def frame(content, finish_reason=None) -> Frame:
    return build_frame(f"data: {delta_payload(content, finish_reason)}")


DONE = Frame(payload="[DONE]", data_lines=["[DONE]"], is_sentinel=True)


# ---------------------------------------------------------------------------
# Image reference scanning
# ---------------------------------------------------------------------------

class TestImageRefs:
    def test_finds_urls_in_order(self):
        text = "a ![image](http://x/1.png) b ![image](http://x/2.png)"
        assert find_image_urls(text) == ["http://x/1.png", "http://x/2.png"]

    def test_duplicates_reported(self):
        text = "![image](u)![image](u)"
        assert find_image_urls(text) == ["u", "u"]

    def test_other_alt_text_not_matched(self):
        assert find_image_urls("![photo](http://x/1.png)") == []

    def test_unclosed_reference_not_matched(self):
        assert find_image_urls("![image](http://x/1.png") == []

    def test_empty_url_not_matched(self):
        assert find_image_urls("![image]() ![image](u)") == ["u"]

    def test_url_stops_at_first_paren(self):
        assert find_image_urls("![image](http://x/a(1).png)") == ["http://x/a(1"]

    def test_strip_removes_markup_and_trims(self):
        text = "  Here is ![image](http://x/1.png) and ![image](u2)  "
        assert strip_image_refs(text) == "Here is  and"

    def test_strip_leaves_unmatched_text(self):
        assert strip_image_refs("![image]() ok") == "![image]() ok"


# ---------------------------------------------------------------------------
# DeltaAggregator
# ---------------------------------------------------------------------------

class TestDeltaAggregator:
    def test_accumulates_content_in_order(self):
        agg = DeltaAggregator()
        assert agg.consume(frame("Hel")) == "Hel"
        assert agg.consume(frame("lo")) == "lo"
        assert agg.state.accumulated_text == "Hello"

    def test_sentinel_terminates(self):
        agg = DeltaAggregator()
        agg.consume(frame("a"))
        agg.consume(DONE)
        assert agg.terminated
        assert agg.consume(frame("b")) is None
        assert agg.state.accumulated_text == "a"

    def test_malformed_frame_dropped(self):
        agg = DeltaAggregator()
        agg.consume(frame("a"))
        assert agg.consume(build_frame("data: {not valid json")) is None
        agg.consume(frame("b"))
        assert agg.state.accumulated_text == "ab"
        assert agg.state.frames_dropped == 1
        assert agg.state.frames_seen == 3

    @pytest.mark.parametrize("payload", [
        "[1, 2, 3]",
        '"just a string"',
        '{"choices": "nope"}',
        '{"choices": [{"delta": {"content": 42}}]}',
        "keep-alive",
    ])
    def test_unexpected_shapes_dropped(self, payload):
        agg = DeltaAggregator()
        assert agg.consume(build_frame(payload)) is None
        assert agg.state.accumulated_text == ""
        assert not agg.terminated

    @pytest.mark.parametrize("payload", [
        "{}",
        '{"choices": []}',
        '{"choices": [{"delta": {}}]}',
        '{"choices": [{"delta": null}]}',
        '{"choices": [{"delta": {"content": ""}}]}',
    ])
    def test_frames_without_content_contribute_nothing(self, payload):
        agg = DeltaAggregator()
        assert agg.consume(build_frame(payload)) is None
        assert agg.state.frames_dropped == 0

    def test_extra_fields_ignored(self):
        agg = DeltaAggregator()
        payload = (
            '{"id": "x", "usage": {"total_tokens": 3}, "choices": '
            '[{"index": 0, "delta": {"role": "assistant", "content": "hi"}}]}'
        )
        assert agg.consume(build_frame(payload)) == "hi"

    @pytest.mark.parametrize("payload", [
        '{"choices": [{"delta": {"content": "hi"}}, {"delta": "x"}]}',
        '{"choices": [{"delta": {"content": "hi"}}], "error": "oops"}',
        '{"choices": [{"delta": {"content": "hi"}, "finish_reason": 1}]}',
    ])
    def test_odd_siblings_do_not_drop_first_choice(self, payload):
        agg = DeltaAggregator()
        assert agg.consume(build_frame(payload)) == "hi"
        assert agg.state.accumulated_text == "hi"
        assert agg.state.frames_dropped == 0

    def test_images_collected_from_fragment(self):
        agg = DeltaAggregator()
        agg.consume(frame("Here is ![image](http://x/1.png) "))
        agg.consume(frame("and ![image](http://x/2.png)"))
        assert agg.state.image_urls == ["http://x/1.png", "http://x/2.png"]

    def test_images_deduplicated(self):
        agg = DeltaAggregator()
        agg.consume(frame("![image](u1) ![image](u1)"))
        agg.consume(frame("![image](u2) ![image](u1)"))
        assert agg.state.image_urls == ["u1", "u2"]

    def test_image_split_across_fragments_not_detected(self):
        agg = DeltaAggregator()
        agg.consume(frame("![image](http://x/"))
        agg.consume(frame("1.png)"))
        assert agg.state.image_urls == []
        assert agg.state.accumulated_text == "![image](http://x/1.png)"

    def test_cap_keeps_first_urls(self):
        agg = DeltaAggregator(max_images=1)
        agg.consume(frame("![image](u1) ![image](u2)"))
        assert agg.state.image_urls == ["u1"]

    @pytest.mark.parametrize("order", list(itertools.permutations(["a", "b", "a", "c", "b"], 5))[:20])
    def test_cap_and_uniqueness_for_any_order(self, order):
        agg = DeltaAggregator(max_images=2)
        for url in order:
            agg.consume(frame(f"![image]({url})"))
        urls = agg.state.image_urls
        assert len(urls) <= 2
        assert len(set(urls)) == len(urls)
        assert urls == list(dict.fromkeys(order))[:2]

    def test_negative_cap_rejected(self):
        with pytest.raises(ValueError):
            DeltaAggregator(max_images=-1)

    def test_consume_all_stops_at_sentinel(self):
        agg = DeltaAggregator()
        state = agg.consume_all([frame("a"), DONE, frame("b")])
        assert state.accumulated_text == "a"
        assert state.terminated


class TestFinalize:
    def test_sanitized_text_and_urls(self):
        agg = DeltaAggregator()
        agg.consume(frame("Here is ![image](http://x/1.png) "))
        result = agg.finalize()
        assert result.text == "Here is"
        assert result.image_urls == ["http://x/1.png"]
        assert result.raw_text == "Here is ![image](http://x/1.png) "
        assert agg.terminated

    def test_truncates_to_quantity(self):
        agg = DeltaAggregator()
        agg.consume(frame("![image](u1) ![image](u2) ![image](u3)"))
        assert agg.finalize(quantity=2).image_urls == ["u1", "u2"]
        assert agg.state.image_urls == ["u1", "u2", "u3"]

    def test_zero_quantity(self):
        agg = DeltaAggregator()
        agg.consume(frame("![image](u1)"))
        assert agg.finalize(quantity=0).image_urls == []

    def test_replay_into_fresh_aggregators_is_equal(self):
        frames = [frame("a ![image](u1)"), build_frame("data: {bad"), frame(" b"), DONE]
        first, second = DeltaAggregator(), DeltaAggregator()
        first.consume_all(frames)
        second.consume_all(frames)
        assert first.finalize(1) == second.finalize(1)
        assert first.state == second.state


class TestUpstreamErrors:
    ERROR = '{"error": {"message": "quota exceeded", "type": "insufficient_quota"}}'

    def test_error_payload_dropped_by_default(self):
        agg = DeltaAggregator()
        agg.consume(frame("a"))
        assert agg.consume(build_frame(f"data: {self.ERROR}")) is None
        agg.consume(frame("b"))
        assert agg.state.accumulated_text == "ab"

    def test_error_payload_raises_when_enabled(self):
        agg = DeltaAggregator(raise_upstream_errors=True)
        with pytest.raises(UpstreamError, match="quota exceeded") as info:
            agg.consume(build_frame(f"data: {self.ERROR}"))
        assert info.value.error_type == "insufficient_quota"

    def test_length_finish_without_content(self):
        agg = DeltaAggregator()
        assert agg.consume(frame(None, finish_reason="length")) is None

        strict = DeltaAggregator(raise_upstream_errors=True)
        with pytest.raises(ReasoningExhaustedError):
            strict.consume(frame("", finish_reason="length"))

    def test_length_finish_with_content_is_fine(self):
        agg = DeltaAggregator(raise_upstream_errors=True)
        assert agg.consume(frame("end", finish_reason="length")) == "end"

    def test_string_error_payload(self):
        agg = DeltaAggregator()
        assert agg.consume(build_frame('{"error": "oops"}')) is None
        assert agg.state.frames_dropped == 0

        strict = DeltaAggregator(raise_upstream_errors=True)
        with pytest.raises(UpstreamError, match="oops") as info:
            strict.consume(build_frame('{"error": "oops"}'))
        assert info.value.error_type is None
