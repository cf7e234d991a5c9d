"""Tests for name rules and the intelligent text corrector."""

from pathlib import Path

import pytest
from conftest import make_student

from gradesheet_ocr.correction.corrector import (
    CorrectionContext,
    IntelligentTextCorrector,
    repair_outlier,
)
from gradesheet_ocr.correction.name_rules import (
    NameRule,
    apply_name_rules,
    default_name_rules,
    load_name_rules,
)
from gradesheet_ocr.exceptions import ConfigurationError
from gradesheet_ocr.extraction.models import DetectedMarkTypes, MarkType
from gradesheet_ocr.utils.config import CorrectionConfig


def _class_with_exam1(values: list[float]) -> list:
    return [
        make_student(i, f"Eleve {chr(64 + i)}", exam1=value)
        for i, value in enumerate(values, 1)
    ]


class TestNameRules:
    """Tests for the ordered name rewrite table."""

    def test_latin_digits_and_punctuation(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("Ahmed 3 Ali.", name_rules) == "Ahmed Ali"

    def test_arabic_cleanup(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("مُحَمَّد", name_rules) == "محمد"
        assert apply_name_rules("محـــمد", name_rules) == "محمد"
        assert apply_name_rules("ع|ي", name_rules) == "علي"
        assert apply_name_rules("أحمد X بناني", name_rules) == "احمد بناني"

    def test_compound_names(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("عبد الله", name_rules) == "عبدالله"
        assert apply_name_rules("محمد ابن علي", name_rules) == "محمد بن علي"

    def test_letter_confusions_rewrite(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("زكرياء", name_rules) == "ركرياء"
        assert apply_name_rules("ذهبي قاسم", name_rules) == "دهبي فاسم"

    def test_arabic_rules_skip_latin_names(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("Sara El Idrissi", name_rules) == "Sara El Idrissi"

    def test_empty_name(self, name_rules: list[NameRule]) -> None:
        assert apply_name_rules("", name_rules) == ""

    def test_invalid_scope(self) -> None:
        with pytest.raises(ConfigurationError):
            NameRule("x", "a", "b", "klingon")

    def test_invalid_pattern(self) -> None:
        with pytest.raises(ConfigurationError):
            NameRule("x", "(", "")


class TestLoadNameRules:
    """Tests for loading the rule table from YAML."""

    def test_shipped_rules_match_builtin_table(self, config_dir: Path) -> None:
        rules = load_name_rules(config_dir / "correction_rules.yaml")
        assert [r.name for r in rules] == [r.name for r in default_name_rules()]
        assert [r.scope for r in rules] == [r.scope for r in default_name_rules()]
        assert apply_name_rules("محـــمد", rules) == "محمد"
        assert apply_name_rules("Ahmed 3 Ali.", rules) == "Ahmed Ali"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        assert len(load_name_rules(tmp_path / "nope.yaml")) == len(default_name_rules())
        assert len(load_name_rules(None)) == len(default_name_rules())

    def test_custom_rules(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "name_rules:\n  - {name: drop_x, pattern: 'x', replacement: '', scope: latin}\n",
            encoding="utf-8",
        )
        rules = load_name_rules(path)
        assert len(rules) == 1
        assert apply_name_rules("Saxra", rules) == "Sara"

    def test_malformed_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "name_rules:\n  - {name: bad, pattern: 'x', colour: red}\n", encoding="utf-8"
        )
        with pytest.raises(ConfigurationError):
            load_name_rules(path)


class TestRepairOutlier:
    """Tests for the outlier repair heuristics."""

    def test_decimal_shift_up(self) -> None:
        assert repair_outlier(1.5, 14.0, 3.0, [3, -3]) == (15.0, "decimal_shift")

    def test_digit_confusion(self) -> None:
        assert repair_outlier(19.0, 14.0, 2.0, [3, -3]) == (16.0, "digit_confusion")

    def test_partial_improvement_is_accepted(self) -> None:
        # still well outside the column spread, but closer than before
        assert repair_outlier(19.0, 10.0, 2.0, [-3]) == (16.0, "digit_confusion")
        assert repair_outlier(0.5, 14.0, 1.0, []) == (5.0, "decimal_shift")

    def test_no_plausible_repair(self) -> None:
        assert repair_outlier(7.0, 14.0, 2.0, []) is None


class TestIntelligentTextCorrector:
    """Tests for name and mark correction of a fused result."""

    @pytest.fixture
    def corrector(self, name_rules: list[NameRule]) -> IntelligentTextCorrector:
        return IntelligentTextCorrector(rules=name_rules)

    def test_decimal_shift_in_column(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([12.0, 13.0, 14.0, 15.0, 16.0] * 4 + [7.0, 19.0, 1.5])
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True))

        by_name = {s.name: s for s in outcome.students}
        assert by_name["Eleve U"].marks[MarkType.EXAM1] == 7.0
        assert by_name["Eleve V"].marks[MarkType.EXAM1] == 19.0
        assert by_name["Eleve W"].marks[MarkType.EXAM1] == 15.0
        assert by_name["Eleve W"].is_uncertain("exam1")
        assert not by_name["Eleve U"].is_uncertain("exam1")

        assert len(outcome.corrections) == 1
        correction = outcome.corrections[0]
        assert correction.kind == "decimal_shift"
        assert (correction.original, correction.corrected) == (1.5, 15.0)
        assert any("corrected to 15" in w for w in outcome.warnings)
        assert students[-1].marks[MarkType.EXAM1] == 1.5

    def test_unrepaired_outlier_is_flagged(self, name_rules: list[NameRule]) -> None:
        corrector = IntelligentTextCorrector(CorrectionConfig(digit_deltas=[]), name_rules)
        students = _class_with_exam1([14.0, 15.0] * 4 + [14.0, 0.0])
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True))
        assert outcome.students[-1].marks[MarkType.EXAM1] == 0.0
        assert outcome.students[-1].is_uncertain("exam1")
        assert outcome.corrections == []
        assert any("left unchanged" in w for w in outcome.warnings)

    def test_constant_column_untouched(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([12.0] * 5)
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True))
        assert outcome.corrections == []

    def test_reference_match_with_letter_confusion(
        self, corrector: IntelligentTextCorrector
    ) -> None:
        students = [make_student(1, "محمد ركرياء", exam1=12.0)]
        context = CorrectionContext(reference_names=["محمد زكرياء", "سعاد بناني"])
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True), context)
        assert outcome.students[0].name == "محمد زكرياء"
        assert [c.kind for c in outcome.corrections] == ["reference_match"]

    def test_letter_confusion_corrected_without_roster(
        self, corrector: IntelligentTextCorrector
    ) -> None:
        assert corrector.correct_name("زينب") == "رينب"
        outcome = corrector.correct(
            [make_student(1, "زينب العلوي", exam1=12.0)], DetectedMarkTypes(exam1=True)
        )
        assert outcome.students[0].name == "رينب العلوي"
        assert [c.kind for c in outcome.corrections] == ["name_rule"]

    def test_rule_then_reference(self, corrector: IntelligentTextCorrector) -> None:
        students = [make_student(1, "Ahmed A1aoui", exam1=12.0)]
        context = CorrectionContext(reference_names=["Ahmed Alaoui"])
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True), context)
        assert outcome.students[0].name == "Ahmed Alaoui"
        assert [c.kind for c in outcome.corrections] == ["name_rule", "reference_match"]

    def test_distant_reference_ignored(self, corrector: IntelligentTextCorrector) -> None:
        students = [make_student(1, "Karim Tazi", exam1=12.0)]
        context = CorrectionContext(reference_names=["Ahmed Alaoui"])
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True), context)
        assert outcome.students[0].name == "Karim Tazi"

    def test_redetect_adds_populated_types(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([12.0] * 10)
        for student in students[:3]:
            student.marks[MarkType.EXAM2] = 14.0
        outcome = corrector.correct(students, DetectedMarkTypes(exam1=True))
        assert outcome.detected.exam2 is True
        assert any("re-detected" in w for w in outcome.warnings)

    def test_redetect_never_removes(self, corrector: IntelligentTextCorrector) -> None:
        detected = DetectedMarkTypes(exam1=True, exam3=True)
        result = corrector.redetect(_class_with_exam1([12.0]), detected, [])
        assert result.exam3 is True


class TestConsistencyChecks:
    """Tests for class-level plausibility warnings."""

    @pytest.fixture
    def corrector(self, name_rules: list[NameRule]) -> IntelligentTextCorrector:
        return IntelligentTextCorrector(rules=name_rules)

    def test_expected_count(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([12.0] * 10)
        warnings = corrector.check_consistency(
            students, DetectedMarkTypes(exam1=True), CorrectionContext(expected_count=30)
        )
        assert any("expected about 30" in w for w in warnings)
        assert not corrector.check_consistency(
            students, DetectedMarkTypes(exam1=True), CorrectionContext(expected_count=12)
        )

    def test_duplicates_and_gaps(self, corrector: IntelligentTextCorrector) -> None:
        students = [
            make_student(1, "Sara", exam1=12.0),
            make_student(2, "sara", exam1=13.0),
            make_student(4, "Karim", exam1=11.0),
        ]
        warnings = corrector.check_consistency(students, DetectedMarkTypes(exam1=True))
        assert any("Duplicate name" in w for w in warnings)
        assert "Numbering gaps at: 3" in warnings

    def test_implausible_column(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([19.0, 19.5, 20.0])
        warnings = corrector.check_consistency(students, DetectedMarkTypes(exam1=True))
        assert any("looks implausible" in w for w in warnings)

    def test_sparse_marks(self, corrector: IntelligentTextCorrector) -> None:
        students = _class_with_exam1([12.0, 13.0, 14.0])
        warnings = corrector.check_consistency(
            students, DetectedMarkTypes(exam1=True, exam2=True)
        )
        assert any("at most one mark" in w for w in warnings)
        assert not any(
            "at most one mark" in w
            for w in corrector.check_consistency(students, DetectedMarkTypes(exam1=True))
        )

    def test_students_without_marks(self, corrector: IntelligentTextCorrector) -> None:
        students = [make_student(1, "Sara", exam1=12.0), make_student(2, "Karim")]
        warnings = corrector.check_consistency(students, DetectedMarkTypes(exam1=True))
        assert "Students without any mark: 2" in warnings
