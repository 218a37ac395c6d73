"""룸 코드 파싱 테스트."""

import pytest

from modules.signaling import extract_room_code


@pytest.mark.parametrize("text, expected", [
    ("4821", "4821"),
    ("  4821  ", "4821"),
    ("https://example.com/room/4821", "4821"),
    ("room 1234 then 5678", "5678"),
    ("code 0042", "0042"),
    ("4821?ref=7", "4821"),
])
def test_extracts_last_four_digit_run(text, expected):
    assert extract_room_code(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", "12", "abc", "123"])
def test_returns_none_without_four_digits(text):
    assert extract_room_code(text) is None


def test_longer_digit_run_uses_its_tail():
    # 뒤에 숫자가 더 붙은 묶음은 건너뛰고, 마지막 4자리만 매칭
    assert extract_room_code("123456") == "3456"


def test_non_string_input_is_coerced():
    assert extract_room_code(4821) == "4821"
