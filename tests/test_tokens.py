import math

from docbatch.errors import AnalysisError
from docbatch.planning.models import FileRecord, TokenCount, TokenError
from docbatch.tokens import HeuristicTokenCounter, count_tokens, estimate_tokens


def test_estimate_tokens_latin_ratio():
    assert estimate_tokens("a" * 100) == 25
    assert estimate_tokens("") == 0


def test_estimate_tokens_cjk_is_denser():
    text = "中文" * 10
    assert estimate_tokens(text) == math.ceil(len(text) * 0.6)
    assert estimate_tokens(text) > estimate_tokens("a" * len(text))


def test_heuristic_counter_reads_file(tmp_path):
    (tmp_path / "app.py").write_text("x" * 400)
    result = HeuristicTokenCounter(tmp_path).calculate_tokens("app.py", None)
    assert result == TokenCount(100)


def test_heuristic_counter_reports_binary_as_error(tmp_path):
    (tmp_path / "blob.py").write_bytes(b"\xff\xfe\x00\x81")
    result = HeuristicTokenCounter(tmp_path).calculate_tokens("blob.py", None)
    assert isinstance(result, TokenError)


def test_heuristic_counter_reports_missing_file(tmp_path):
    result = HeuristicTokenCounter(tmp_path).calculate_tokens("nope.py", None)
    assert isinstance(result, TokenError)


class _FlakyCounter:
    def calculate_tokens(self, path, content, language_profile=None):
        if path == "boom.py":
            raise RuntimeError("parser crashed")
        if path == "bad.py":
            raise AnalysisError("cannot measure", path=path)
        if path == "neg.py":
            return TokenCount(-5)
        return TokenCount(len(path))


def test_count_tokens_captures_failures_and_keeps_order():
    records = [FileRecord(path=p, original_index=i) for i, p in enumerate(
        ["a.py", "boom.py", "bb.py", "bad.py", "neg.py", "ccc.py"]
    )]
    counted = count_tokens(records, _FlakyCounter(), max_workers=3)

    assert [r.path for r in counted] == [r.path for r in records]
    assert counted[0].token_count == len("a.py")
    assert counted[2].token_count == len("bb.py")
    assert counted[1].is_error and "parser crashed" in counted[1].analysis_error
    assert counted[3].analysis_error == "cannot measure"
    assert counted[4].is_error
    assert counted[5].token_count == len("ccc.py")


def test_count_tokens_empty():
    assert count_tokens([], _FlakyCounter()) == []
