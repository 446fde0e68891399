"""L1 Unit Tests: tolerant JSON extraction from generated text."""

import pytest

from storymem.memory.parser import fix_json_string, parse_json_response


class TestFixJsonString:
    def test_trailing_comma_stripped(self):
        assert fix_json_string('{"a":"b",}') == '{"a":"b"}'
        assert fix_json_string('[1, 2, ]') == "[1, 2]"

    def test_newline_and_tab_inside_string_escaped(self):
        fixed = fix_json_string('{"t": "one\ntwo\tthree"}')
        assert fixed == '{"t": "one\\ntwo\\tthree"}'

    def test_carriage_return_inside_string_dropped(self):
        assert fix_json_string('{"t": "a\r\nb"}') == '{"t": "a\\nb"}'

    def test_structure_outside_strings_untouched(self):
        raw = '{\n  "a": 1,\n  "b": [true, null]\n}'
        assert fix_json_string(raw) == raw

    def test_inner_quote_escaped(self):
        assert fix_json_string('{"a": "x"y"}') == '{"a": "x\\"y"}'

    def test_existing_escape_preserved(self):
        raw = '{"a": "say \\"hi\\""}'
        assert fix_json_string(raw) == raw

    def test_quote_before_whitespace_then_structural_closes(self):
        assert fix_json_string('{"a": "b" \n, "c": 1}') == '{"a": "b" \n, "c": 1}'


class TestParseJsonResponse:
    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_trailing_comma(self):
        assert parse_json_response('{"a":"b",}') == {"a": "b"}

    def test_fenced_block(self):
        text = 'Sure, here it is:\n```json\n{"timeline": "D1: x", "items": []}\n```\nDone.'
        assert parse_json_response(text) == {"timeline": "D1: x", "items": []}

    def test_fenced_block_without_language(self):
        assert parse_json_response('```\n{"k": [1, 2]}\n```') == {"k": [1, 2]}

    def test_surrounding_prose(self):
        text = 'Analysis complete. {"newPages": []} Let me know if anything else.'
        assert parse_json_response(text) == {"newPages": []}

    def test_embedded_unescaped_quote(self):
        result = parse_json_response('{"a": "x"y", "b": 1}')
        assert result == {"a": 'x"y', "b": 1}

    def test_embedded_dialogue_quotes(self):
        result = parse_json_response('{"content": "他说"我不会走"然后离开了"}')
        assert result == {"content": '他说"我不会走"然后离开了'}

    def test_raw_newlines_in_content(self):
        result = parse_json_response('{"timeline": "D1: 相遇\nD2: 争吵"}')
        assert result["timeline"] == "D1: 相遇\nD2: 争吵"

    def test_smart_quotes_as_delimiters(self):
        result = parse_json_response("{“title”: “重逢”, “day”: “D3”}")
        assert result == {"title": "重逢", "day": "D3"}

    def test_smart_quotes_inside_content_become_plain_quotes(self):
        # 正文里的弯引号落地为普通双引号, 不保留原字符
        result = parse_json_response("{“content”: “他说“走”了”}")
        assert result == {"content": '他说"走"了'}
        assert "“" not in result["content"]

    def test_smart_single_quotes_become_apostrophes(self):
        result = parse_json_response("{“note”: “it‘s fine”}")
        assert result == {"note": "it's fine"}

    @pytest.mark.parametrize("text", [None, "", "no json here", "{broken", "[1, 2, 3]"])
    def test_unparseable_returns_none(self, text):
        assert parse_json_response(text) is None

    def test_never_returns_partial_object(self):
        assert parse_json_response('{"a": 1, "b": {"c": }') is None
