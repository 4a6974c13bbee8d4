"""Tests for source/target schema classification and column matching."""

import pytest

from tablepipe.core.errors import ConfigurationError
from tablepipe.core.models import ColumnInfo, SemanticType, TargetColumn, TargetSchema
from tablepipe.dialects.base import IdentifierRules
from tablepipe.schema.compatibility import CompatibilityStatus, classify
from tablepipe.schema.matcher import find_target_column, physical_name, resolve_key_columns


def _target(*columns, row_count=0):
    return TargetSchema(exists=True, columns=tuple(columns), row_count=row_count)


def _status(report, name):
    return next(c.status for c in report.columns if c.name == name)


class TestClassify:
    def test_missing_target_means_every_column_will_be_created(self):
        report = classify([ColumnInfo("id"), ColumnInfo("name")], TargetSchema.missing())

        assert not report.target_exists
        assert report.is_compatible
        assert {c.status for c in report.columns} == {CompatibilityStatus.WILL_BE_CREATED}

    def test_matching_columns_are_compatible(self):
        snapshot = _target(
            TargetColumn("id", "BIGINT", SemanticType.LONG, nullable=False, primary_key=True),
            TargetColumn("name", "VARCHAR", SemanticType.STRING),
        )
        report = classify(
            [ColumnInfo("id", SemanticType.INTEGER), ColumnInfo("name")], snapshot
        )

        assert report.is_compatible
        assert report.warnings == ()
        assert _status(report, "id") == CompatibilityStatus.COMPATIBLE

    def test_narrowing_and_bounded_text_warn_about_truncation(self):
        snapshot = _target(
            TargetColumn("n", "INTEGER", SemanticType.INTEGER),
            TargetColumn("code", "CHAR(10)", SemanticType.STRING, max_length=10),
        )
        report = classify([ColumnInfo("n", SemanticType.LONG), ColumnInfo("code")], snapshot)

        assert _status(report, "n") == CompatibilityStatus.POSSIBLE_TRUNCATION
        assert _status(report, "code") == CompatibilityStatus.POSSIBLE_TRUNCATION
        assert report.is_compatible
        assert len(report.warnings) == 2

    def test_type_mismatch_is_a_warning(self):
        snapshot = _target(TargetColumn("flag", "BLOB", SemanticType.BYTES))
        report = classify([ColumnInfo("flag", SemanticType.BOOLEAN)], snapshot)

        assert _status(report, "flag") == CompatibilityStatus.TYPE_MISMATCH
        assert report.is_compatible

    def test_nullable_source_into_not_null_target_is_an_error(self):
        snapshot = _target(TargetColumn("name", "TEXT", SemanticType.STRING, nullable=False))
        report = classify([ColumnInfo("name", nullable=True)], snapshot)

        assert _status(report, "name") == CompatibilityStatus.NULLABILITY_CONFLICT
        assert not report.is_compatible

    def test_extra_target_columns(self):
        snapshot = _target(
            TargetColumn("id", "INTEGER", SemanticType.INTEGER),
            TargetColumn("note", "TEXT", SemanticType.STRING),
            TargetColumn("required", "TEXT", SemanticType.STRING, nullable=False),
        )
        report = classify([ColumnInfo("id", SemanticType.INTEGER)], snapshot)

        assert _status(report, "note") == CompatibilityStatus.EXTRA_IN_TARGET
        assert _status(report, "required") == CompatibilityStatus.EXTRA_IN_TARGET_NOT_NULL
        assert len(report.errors) == 1

    @pytest.mark.parametrize("strict,compatible", [(False, True), (True, False)])
    def test_missing_in_target_is_an_error_only_when_strict(self, strict, compatible):
        snapshot = _target(TargetColumn("id", "INTEGER", SemanticType.INTEGER))
        columns = [ColumnInfo("id", SemanticType.INTEGER), ColumnInfo("extra")]

        report = classify(columns, snapshot, strict=strict)

        assert _status(report, "extra") == CompatibilityStatus.MISSING_IN_TARGET
        assert report.is_compatible is compatible
        assert [c.name for c in report.missing_columns] == ["extra"]

    def test_existing_rows_produce_a_warning(self):
        snapshot = _target(TargetColumn("id", "INTEGER", SemanticType.INTEGER), row_count=1500)
        report = classify([ColumnInfo("id", SemanticType.INTEGER)], snapshot)

        assert report.warnings == ("Target table already contains 1,500 rows",)


class TestMatching:
    def test_physical_name_keeps_spelling_that_folding_would_change(self):
        upper = IdentifierRules(fold="upper")

        assert physical_name(ColumnInfo("NAME"), upper) == "NAME"
        assert physical_name(ColumnInfo("Name"), upper) == "Name"
        assert physical_name(ColumnInfo("my col"), upper) == "my col"

    def test_exact_match_wins_over_case_insensitive(self):
        snapshot = _target(
            TargetColumn("name", "TEXT", SemanticType.STRING),
            TargetColumn("Name", "TEXT", SemanticType.STRING),
        )

        found = find_target_column(ColumnInfo("Name"), snapshot, IdentifierRules(fold=None))

        assert found.name == "Name"

    def test_case_sensitive_columns_do_not_fall_back(self):
        snapshot = _target(TargetColumn("NAME", "TEXT", SemanticType.STRING))

        assert find_target_column(ColumnInfo("name"), snapshot).name == "NAME"
        assert find_target_column(ColumnInfo("name", case_sensitive=True), snapshot) is None

    def test_resolve_key_columns(self):
        assert resolve_key_columns(["ID", "id"], ["id", "name"]) == ["id"]
        with pytest.raises(ConfigurationError, match="Key column 'code' not found"):
            resolve_key_columns(["code"], ["id", "name"])
