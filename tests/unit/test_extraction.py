"""Unit tests for JSON candidate extraction."""

from moodlog.services.extraction import extract_json_candidate


class TestExtractJsonCandidate:
    """Test extraction order: fenced block, braces, nothing."""

    def test_fenced_block_preferred(self):
        content = 'Here you go:\n```json\n{"a": 1}\n```\nAnd {"b": 2} later.'

        result = extract_json_candidate(content)

        assert result.candidate == '{"a": 1}'
        assert result.method == "fenced"

    def test_fenced_block_is_trimmed(self):
        result = extract_json_candidate('```json   \n\n  {"a": 1}  \n\n```')

        assert result.candidate == '{"a": 1}'

    def test_first_fenced_block_wins(self):
        content = '```json\n{"first": true}\n```\n```json\n{"second": true}\n```'

        assert extract_json_candidate(content).candidate == '{"first": true}'

    def test_greedy_braces_without_fence(self):
        content = 'Sure! {"a": {"b": 1}} hope that helps {"c": 2} bye'

        result = extract_json_candidate(content)

        assert result.candidate == '{"a": {"b": 1}} hope that helps {"c": 2}'
        assert result.method == "braces"

    def test_non_json_fence_falls_back_to_braces(self):
        content = '```python\nd = {"a": 1}\n```'

        assert extract_json_candidate(content).candidate == '{"a": 1}'

    def test_unterminated_fence_uses_tail(self):
        content = 'Analysis:\n```json\n{"a": [1, 2'

        result = extract_json_candidate(content)

        assert result.candidate == '{"a": [1, 2'
        assert result.method == "fenced_unterminated"

    def test_no_braces_is_not_found(self):
        assert extract_json_candidate("Just prose, no structure at all.") is None

    def test_close_brace_before_open_is_not_found(self):
        assert extract_json_candidate("} then {") is None

    def test_empty_content(self):
        assert extract_json_candidate("") is None

    def test_empty_fence_falls_back(self):
        content = '```json\n```\n{"a": 1}'

        assert extract_json_candidate(content).candidate == '{"a": 1}'
