import pytest

from docbatch.config_loader import PlanningConfig
from docbatch.errors import ValidationError
from docbatch.planning.classifier import FileClassifier, classify_tokens
from docbatch.planning.models import FileCategory, FileRecord


@pytest.mark.parametrize(
    "tokens, expected",
    [
        (0, FileCategory.SMALL),
        (14_999, FileCategory.SMALL),
        (15_000, FileCategory.MEDIUM),
        (19_999, FileCategory.MEDIUM),
        (20_000, FileCategory.LARGE),
        (250_000, FileCategory.LARGE),
    ],
)
def test_classify_tokens_thresholds(tokens, expected):
    assert classify_tokens(tokens, 15_000, 20_000) is expected


def test_classify_tokens_rejects_inverted_thresholds():
    with pytest.raises(ValidationError):
        classify_tokens(100, 20_000, 15_000)


def test_classify_tokens_rejects_negative():
    with pytest.raises(ValidationError):
        classify_tokens(-1, 15_000, 20_000)


def test_classifier_buckets_are_exhaustive_and_disjoint(make_record):
    records = [
        make_record("a.py", 100, 0),
        make_record("b.py", 16_000, 1),
        make_record("c.py", 30_000, 2),
        make_record("d.py", "not valid UTF-8 text", 3),
        FileRecord(path="e.py", original_index=4),
    ]
    result = FileClassifier(PlanningConfig()).classify(records)

    assert [r.path for r in result.small] == ["a.py"]
    assert [r.path for r in result.medium] == ["b.py"]
    assert [r.path for r in result.large] == ["c.py"]
    assert [r.path for r in result.error] == ["d.py", "e.py"]
    assert result.total == len(records)
    assert result.counts() == {"small": 1, "medium": 1, "large": 1, "error": 2}


def test_classifier_is_idempotent(make_record):
    records = [make_record(f"f{i}.py", t, i) for i, t in enumerate([10, 15_000, 25_000, 14_999, 20_000])]
    classifier = FileClassifier()

    first = classifier.classify(records)
    second = classifier.classify(records)

    for category in FileCategory:
        assert [r.path for r in first.bucket(category)] == [r.path for r in second.bucket(category)]


def test_classifier_keeps_scan_order_within_bucket(make_record):
    records = [make_record(f"s{i}.py", 100 + i, i) for i in range(5)]
    result = FileClassifier().classify(records)
    assert [r.original_index for r in result.small] == [0, 1, 2, 3, 4]


def test_negative_count_lands_in_error_bucket(make_record):
    records = [make_record("ok.py", 100, 0), make_record("weird.py", -1, 1)]
    result = FileClassifier().classify(records)

    assert [r.path for r in result.small] == ["ok.py"]
    assert [r.path for r in result.error] == ["weird.py"]
    assert result.error[0].analysis_error == "negative token count: -1"
