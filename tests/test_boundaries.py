from docbatch.boundaries import RegexBoundaryDetector, safe_detect, source_lines

PYTHON_SOURCE = """import os


def alpha():
    return 1


@decorator
@other
def beta():
    class Inner:
        pass


class Gamma:
    def method(self):
        pass
"""


def test_python_boundaries_start_at_decorators():
    assert RegexBoundaryDetector().detect(PYTHON_SOURCE, "python") == [4, 8, 15]


def test_unknown_language_has_no_boundaries():
    assert RegexBoundaryDetector().detect(PYTHON_SOURCE, "cobol") == []


def test_go_boundaries():
    source = "package main\n\nfunc a() {}\n\ntype T struct{}\n\nfunc (t T) b() {}\n"
    assert RegexBoundaryDetector().detect(source, "go") == [3, 5, 7]


class _Sloppy:
    def detect(self, content, language):
        return [9, 3, 3, 1, 500]


class _Broken:
    def detect(self, content, language):
        raise ValueError("nope")


def test_safe_detect_normalizes_output():
    content = "\n".join(f"line {i}" for i in range(1, 11))
    assert safe_detect(_Sloppy(), content, "python") == [3, 9]


def test_safe_detect_degrades_on_failure():
    assert safe_detect(_Broken(), "a\nb\n", "python") == []
    assert safe_detect(None, "a\nb\n", "python") == []


def test_form_feed_does_not_start_a_new_line():
    source = "import os\n\f\ndef alpha():\n    return '\x85'\n\ndef beta():\n    pass\n"
    assert len(source_lines(source)) == 7
    assert RegexBoundaryDetector().detect(source, "python") == [3, 6]
    assert safe_detect(RegexBoundaryDetector(), source, "python") == [3, 6]
