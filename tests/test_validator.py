import pytest

from docbatch.config_loader import DocBatchConfig, ValidationStrictness
from docbatch.errors import ValidationError
from docbatch.tasks.definitions import TaskDefinitionBuilder
from docbatch.validator import CompletionValidator


def test_reports_existing_and_missing_artifacts(tmp_path, make_definition, write_artifact):
    write_artifact(tmp_path, "files", "a.md")
    definition = make_definition("task_1", outputs=["a.md", "b.md"])

    report = CompletionValidator().validate(definition, tmp_path)

    assert report.success is False
    assert [a.name for a in report.existing_files] == ["a.md"]
    assert [a.name for a in report.missing_files] == ["b.md"]
    assert report.missing_files[0].reason == "not found"
    assert report.existing_files[0].size > 0


def test_all_present_succeeds(tmp_path, make_definition, write_artifact):
    write_artifact(tmp_path, "files", "task_1_app_analysis.md")
    report = CompletionValidator().validate(make_definition("task_1"), tmp_path)
    assert report.success is True
    assert report.checked is True
    assert report.strictness is ValidationStrictness.EXISTENCE


def test_min_size_strictness_for_relations(tmp_path, write_artifact):
    definition = TaskDefinitionBuilder().build_step_definition("relations")
    validator = CompletionValidator()

    write_artifact(tmp_path, "relations", "relations.md", "tiny")
    report = validator.validate(definition, tmp_path)
    assert report.success is False
    assert "below minimum 50" in report.missing_files[0].reason

    write_artifact(tmp_path, "relations", "relations.md", "x" * 60)
    assert validator.validate(definition, tmp_path).success is True


def test_existence_override_ignores_size(tmp_path, write_artifact):
    definition = TaskDefinitionBuilder().build_step_definition("relations")
    write_artifact(tmp_path, "relations", "relations.md", "tiny")
    report = CompletionValidator().validate(definition, tmp_path, strictness="existence")
    assert report.success is True


def test_architecture_docs_live_at_docs_root(tmp_path, write_artifact):
    definition = TaskDefinitionBuilder().build_step_definition("architecture")
    write_artifact(tmp_path, "", "README.md", "r" * 150)
    write_artifact(tmp_path, "", "architecture.md", "a" * 150)
    assert CompletionValidator().validate(definition, tmp_path).success is True


def test_strictness_none_skips_disk(tmp_path, make_definition):
    report = CompletionValidator().validate(
        make_definition("task_1"), tmp_path, strictness=ValidationStrictness.NONE
    )
    assert report.success is True
    assert report.checked is False


def test_escaping_artifact_names_are_missing(tmp_path, make_definition):
    (tmp_path / "escape.md").write_text("outside")
    report = CompletionValidator().validate(make_definition("task_1", outputs=["../../../escape.md"]), tmp_path)
    assert report.success is False
    assert "escapes" in report.missing_files[0].reason


def test_no_expected_outputs_never_succeeds(tmp_path, make_definition):
    assert CompletionValidator().validate(make_definition("task_1", outputs=[]), tmp_path).success is False


def test_custom_docs_root(tmp_path, make_definition):
    config = DocBatchConfig.model_validate({"output": {"docs_root": "out"}})
    target = tmp_path / "out" / "files" / "task_1_app_analysis.md"
    target.parent.mkdir(parents=True)
    target.write_text("done")
    assert CompletionValidator(config).validate(make_definition("task_1"), tmp_path).success


def test_validate_many(tmp_path, make_definition, write_artifact):
    write_artifact(tmp_path, "files", "task_1_app_analysis.md")
    reports = CompletionValidator().validate_many(
        [make_definition("task_1"), make_definition("task_2")], tmp_path
    )
    assert {k: r.success for k, r in reports.items()} == {"task_1": True, "task_2": False}


def test_unknown_strictness_is_a_validation_error(tmp_path, make_definition):
    with pytest.raises(ValidationError, match="strict-ish"):
        CompletionValidator().validate(make_definition("task_1"), tmp_path, strictness="strict-ish")
