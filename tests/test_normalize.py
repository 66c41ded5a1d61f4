"""Tests for design_qa.generation.normalize and records."""

import pytest

from design_qa.generation.normalize import (
    collation_key,
    dedupe_by_no,
    format_numbered_list,
    format_steps,
    normalize_record,
    post_process,
)
from design_qa.generation.records import RawTestCase, TestCaseRecord, get_field_ci


def rec(no=0, d1="", d2="", d3="", title="t", **kwargs):
    return TestCaseRecord(no=no, depth1=d1, depth2=d2, depth3=d3, title=title, **kwargs)


@pytest.fixture
def mixed_records():
    return [
        rec(9, "회원가입", "약관", title="a"),
        rec(3, "로그인", "실패", title="b"),
        rec(3, "Admin", "", title="c"),
        rec(1, "로그인", "성공", title="d"),
        rec(5, "로그인", "실패", title="e"),
        rec(2, "", "", title="f"),
        rec(7, "결제", "쿠폰", "만료", title="g"),
    ]


# ---------------------------------------------------------------------------
# Tests: text formatting
# ---------------------------------------------------------------------------


class TestFormatting:

    def test_inline_numbered_list_is_split(self):
        assert format_numbered_list("1. ID 입력 2. PW 입력 3. 로그인 클릭") == (
            "1. ID 입력\n2. PW 입력\n3. 로그인 클릭"
        )

    def test_leading_marker_not_preceded_by_newline(self):
        assert format_numbered_list("  1. 로그인된 상태") == "1. 로그인된 상태"

    def test_decimal_is_kept(self):
        assert format_numbered_list("금액 2.5 입력") == "금액 2.5 입력"

    def test_steps_lose_trailing_period(self):
        assert format_steps("1. 메뉴 진입. 2. [저장] 버튼 클릭.") == "1. 메뉴 진입\n2. [저장] 버튼 클릭"

    def test_existing_newlines_kept(self):
        assert format_steps("1. ID 입력\n2. 잘못된 PW 입력\n3. 로그인 클릭") == (
            "1. ID 입력\n2. 잘못된 PW 입력\n3. 로그인 클릭"
        )

    def test_normalize_record_trims_and_keeps_id(self):
        record = rec(
            1, "  로그인 ", title="  제목  ",
            precondition="1. 상태A 2. 상태B",
            steps="1. 진입.",
            expected_result=" 노출된다 ",
        )
        out = normalize_record(record)
        assert out.id == record.id
        assert out.title == "제목"
        assert out.depth1 == "로그인"
        assert out.precondition == "1. 상태A\n2. 상태B"
        assert out.steps == "1. 진입"
        assert out.expected_result == "노출된다"


# ---------------------------------------------------------------------------
# Tests: post_process
# ---------------------------------------------------------------------------


class TestPostProcess:

    def test_dense_renumbering(self, mixed_records):
        out = post_process(mixed_records)
        assert sorted(r.no for r in out) == list(range(1, len(mixed_records) + 1))
        assert [r.no for r in out] == list(range(1, len(out) + 1))

    def test_sorted_by_category_path(self, mixed_records):
        out = post_process(mixed_records)
        keys = [(collation_key(r.depth1), collation_key(r.depth2), collation_key(r.depth3)) for r in out]
        assert keys == sorted(keys)

    def test_korean_order(self, mixed_records):
        out = post_process(mixed_records)
        assert [r.depth1 for r in out] == ["", "결제", "로그인", "로그인", "로그인", "회원가입", "Admin"]

    def test_ties_keep_input_order(self, mixed_records):
        out = post_process(mixed_records)
        failures = [r.title for r in out if (r.depth1, r.depth2) == ("로그인", "실패")]
        assert failures == ["b", "e"]

    def test_idempotent(self, mixed_records):
        once = post_process(mixed_records)
        twice = post_process(once)
        assert [r.model_dump() for r in twice] == [r.model_dump() for r in once]

    def test_ids_survive(self, mixed_records):
        out = post_process(mixed_records)
        assert {r.id for r in out} == {r.id for r in mixed_records}

    def test_empty(self):
        assert post_process([]) == []

    def test_case_insensitive_latin(self):
        out = post_process([rec(d1="beta"), rec(d1="Alpha"), rec(d1="alpha")])
        assert [r.depth1 for r in out] == ["alpha", "Alpha", "beta"]

    def test_symbols_then_digits_then_hangul_then_latin(self):
        out = post_process([rec(d1="API 연동"), rec(d1="로그인"), rec(d1="[공통]"), rec(d1="1. 메인")])
        assert [r.depth1 for r in out] == ["[공통]", "1. 메인", "로그인", "API 연동"]

    def test_hangul_dictionary_order(self):
        out = post_process([rec(d1="하단"), rec(d1="가입"), rec(d1="각도"), rec(d1="나열")])
        assert [r.depth1 for r in out] == ["가입", "각도", "나열", "하단"]

    def test_depth2_ordering_follows_same_rules(self):
        out = post_process([rec(d1="로그인", d2="SNS"), rec(d1="로그인", d2="실패"), rec(d1="로그인", d2="2단계")])
        assert [r.depth2 for r in out] == ["2단계", "실패", "SNS"]


class TestDedupeByNo:

    def test_first_wins(self):
        records = [rec(1, title="a"), rec(2, title="b"), rec(1, title="c")]
        assert [r.title for r in dedupe_by_no(records)] == ["a", "b"]


# ---------------------------------------------------------------------------
# Tests: raw -> canonical mapping
# ---------------------------------------------------------------------------


class TestRawTestCase:

    def test_case_insensitive_keys(self):
        raw = RawTestCase.from_mapping({
            "No": "4", "Title": "제목", "DEPTH1": "A", "ExpectedResult": "됨",
            "steps": ["1. a", "2. b"],
        })
        record = raw.to_record()
        assert record.no == 4
        assert record.title == "제목"
        assert record.depth1 == "A"
        assert record.expected_result == "됨"
        assert record.steps == "1. a\n2. b"
        assert record.precondition == ""

    def test_snake_case_alias(self):
        raw = RawTestCase.from_mapping({"no": 1.0, "expected_result": "x"})
        assert raw.no == 1
        assert raw.expected_result == "x"

    def test_unusable_number(self):
        assert RawTestCase.from_mapping({"no": "abc"}).to_record().no == 0

    def test_exact_key_wins(self):
        assert get_field_ci({"TITLE": "upper", "title": "exact"}, ["title"]) == "exact"

    def test_non_mapping(self):
        assert get_field_ci(["title"], ["title"]) is None

    def test_records_get_distinct_ids(self):
        assert rec().id != rec().id
