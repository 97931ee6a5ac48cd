# tests/unit/domain/dependencies/test_change_detector.py
import pytest

from domain.dependencies.change_detector import (
    ChangeType,
    NULL_HASH,
    analyze_change,
    detect_batch_changes,
    detect_subfield_changes,
    has_semantic_change,
    hash_field_content,
    is_significant_change,
)


class TestHashFieldContent:
    """Test content hashing"""

    def test_key_order_does_not_matter(self):
        assert hash_field_content({"a": 1, "b": {"x": 1, "y": 2}}) == hash_field_content(
            {"b": {"y": 2, "x": 1}, "a": 1}
        )

    def test_null_sentinel(self):
        assert hash_field_content(None) == NULL_HASH

    def test_hash_is_short_hex(self):
        digest = hash_field_content({"primary": "#000000"})
        assert len(digest) == 16
        int(digest, 16)

    def test_different_content_different_hash(self):
        assert hash_field_content({"a": 1}) != hash_field_content({"a": 2})
        assert hash_field_content([1, 2]) != hash_field_content([2, 1])

    def test_hash_is_deterministic(self):
        value = {"stages": [{"name": "Awareness", "kpis": ["visits"]}]}
        assert hash_field_content(value) == hash_field_content(value)


class TestSemanticChange:
    """Test semantic comparison rules"""

    @pytest.mark.parametrize("value", [
        "text",
        42,
        True,
        [1, [2, {"a": 3}]],
        {"nested": {"list": [1, 2], "flag": False}},
    ])
    def test_identical_values_do_not_change(self, value):
        assert has_semantic_change(value, value) is False

    def test_case_and_whitespace_insensitive(self):
        assert has_semantic_change("Hello ", "hello") is False
        assert has_semantic_change("Hello", "World") is True

    def test_array_order_matters(self):
        assert has_semantic_change([1, 2], [2, 1]) is True

    def test_array_length_change(self):
        assert has_semantic_change([1], [1, 1]) is True

    def test_array_elements_compared_semantically(self):
        assert has_semantic_change(["Coffee "], ["coffee"]) is False

    def test_nulls(self):
        assert has_semantic_change(None, None) is False
        assert has_semantic_change(None, "x") is True
        assert has_semantic_change("x", None) is True

    def test_type_mismatch_is_a_change(self):
        assert has_semantic_change("1", 1) is True
        assert has_semantic_change(1, True) is True
        assert has_semantic_change([1], {"0": 1}) is True

    def test_int_and_float_compare_by_value(self):
        assert has_semantic_change(1, 1.0) is False

    def test_objects_compare_by_hash(self):
        assert has_semantic_change({"a": 1, "b": 2}, {"b": 2, "a": 1}) is False
        assert has_semantic_change({"a": 1}, {"a": 1, "b": 2}) is True


class TestSubfieldChanges:

    def test_changed_keys(self):
        old = {"problem": "Loud cafes", "solution": "Quiet cafe", "channels": ["Web"]}
        new = {"problem": "loud cafes ", "solution": "Desk rental", "channels": ["Web"]}
        assert detect_subfield_changes(old, new) == ["solution"]

    def test_added_and_removed_keys(self):
        assert detect_subfield_changes({"a": 1}, {"b": 1}) == ["a", "b"]

    def test_one_side_missing_reports_all_keys(self):
        assert detect_subfield_changes(None, {"primary": "#000", "accent": "#fff"}) == ["primary", "accent"]
        assert detect_subfield_changes({"primary": "#000"}, None) == ["primary"]

    def test_both_missing(self):
        assert detect_subfield_changes(None, None) == []


class TestAnalyzeChange:
    """Test change classification"""

    def test_created(self):
        analysis = analyze_change(None, "Brew Hub")
        assert analysis.change_type == ChangeType.CREATED
        assert analysis.has_change is True

    def test_deleted(self):
        analysis = analyze_change("Brew Hub", None)
        assert analysis.change_type == ChangeType.DELETED

    def test_updated_with_subfields(self):
        analysis = analyze_change({"primary": "#000", "text": "#111"}, {"primary": "#fff", "text": "#111"})
        assert analysis.change_type == ChangeType.UPDATED
        assert analysis.changed_subfields == ["primary"]
        assert analysis.old_hash != analysis.new_hash

    def test_unchanged(self):
        analysis = analyze_change({"a": 1}, {"a": 1})
        assert analysis.change_type == ChangeType.UNCHANGED
        assert analysis.has_change is False
        assert analysis.changed_subfields == []

    def test_no_subfields_for_arrays(self):
        analysis = analyze_change([{"name": "a"}], [{"name": "b"}])
        assert analysis.has_change is True
        assert analysis.changed_subfields == []


class TestSignificance:
    """Test the significance allow-list"""

    def test_no_subfields_is_significant(self):
        assert is_significant_change("business_canvas", []) is True

    def test_unknown_field_fails_open(self):
        assert is_significant_change("customer_journey", ["stages"]) is True

    def test_insignificant_subfield(self):
        assert is_significant_change("business_canvas", ["channels"]) is False
        assert is_significant_change("brand_colors", ["background", "text"]) is False

    def test_any_significant_subfield(self):
        assert is_significant_change("business_canvas", ["channels", "problem"]) is True
        assert is_significant_change("market_research", ["trends"]) is True


class TestBatchChanges:

    def test_only_changed_fields_reported(self):
        old = {"tagline": "Work, fueled", "brand_voice": "Calm", "brand_colors": {"text": "#000"}}
        new = {"tagline": "Work, fueled", "brand_voice": "Bold", "brand_colors": {"text": "#111"}}

        changes = detect_batch_changes(old, new)

        assert [c.field for c in changes] == ["brand_voice", "brand_colors"]
        assert changes[0].is_significant is True
        assert changes[1].is_significant is False

    def test_explicit_field_list(self):
        changes = detect_batch_changes({"a": 1, "b": 1}, {"a": 2, "b": 2}, fields=["b"])
        assert [c.field for c in changes] == ["b"]
