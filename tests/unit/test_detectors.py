"""Rule-based explanation tests."""

from pipeline_xray.contracts import Step
from pipeline_xray.reasoning import run_detectors
from pipeline_xray.reasoning.detectors import SelectionDetector, as_count


def explain(input, output):
    return run_detectors(Step(name="any_step", input=input, output=output))


def test_pass_fail_counts_with_filter_criteria():
    message = explain(
        {"filters_applied": {"minRating": 4.0, "max_price": 30, "category": "x"}},
        {"total_evaluated": 10, "passed": 3, "failed": 7},
    )
    assert message.startswith("Evaluated 10 items: 3 passed, 7 failed")
    assert "minRating" in message
    assert "max price" in message
    assert "category" not in message


def test_pass_fail_derives_missing_counter():
    assert explain({}, {"total_evaluated": 8, "passed": 5}) == (
        "Evaluated 8 items: 5 passed, 3 failed"
    )
    assert explain({}, {"passed": 2, "failed": 4}) == (
        "Evaluated 6 items: 2 passed, 4 failed"
    )
    assert explain({}, {"total_evaluated": 10, "failed": 7}) == (
        "Evaluated 10 items: 3 passed, 7 failed"
    )


def test_pass_fail_needs_two_counters():
    assert explain({}, {"total_evaluated": 10}) is None
    assert explain({}, {"failed": 7}) is None


def test_retrieval_query_sources():
    assert explain(
        {"keyword": "bottle"}, {"total_results": 2847, "candidates_fetched": 10}
    ) == 'Found 2847 results for "bottle", returned 10'
    assert explain(
        {"themes": ["heist", "dreams"]}, {"total_found": 40, "candidates": [1, 2]}
    ) == 'Found 40 results for "heist, dreams", returned 2'
    assert explain({}, {"total": 5, "returned": 5}) == 'Found 5 results for "query", returned 5'


def test_theme_extraction():
    assert explain(
        {"seed_movie": "Inception"}, {"extracted_themes": ["dreams", "heist"]}
    ) == 'Extracted "dreams, heist" from "Inception"'


def test_shrinkage_only_when_counts_differ():
    assert explain({"candidates_count": 12}, {"remaining": 4}) == (
        "Filtered 12 candidates down to 4"
    )
    assert explain({"candidates_count": 4}, {"remaining": 4}) is None


def test_evaluation_list_classification():
    message = explain(
        {},
        {
            "evaluations": [
                {"is_relevant": True},
                {"is_competitor": False},
                {"passed": True},
                {"ok": False},
                {"note": "undecided"},
            ]
        },
    )
    assert message == "Evaluated 5 candidates: 2 accepted, 2 rejected"


def test_selection_label_resolution():
    assert SelectionDetector.label({"label": "Best"}) == "Best"
    assert SelectionDetector.label({"movie": {"title": "Arrival"}}) == "Arrival"
    assert SelectionDetector.label({"product": {"id": "B01"}}) == "B01"
    assert SelectionDetector.label({"asin": "B0XYZ"}) == "B0XYZ"
    assert SelectionDetector.label("opaque") == "one item"

    assert explain(
        {}, {"selection": {"title": "Arrival"}, "ranked_candidates": [1, 2, 3]}
    ) == 'Selected "Arrival" as top choice from 3 candidate(s)'
    assert explain({}, {"selection": {"score": 1}}) == (
        'Selected "one item" as top choice from 1 candidate(s)'
    )


def test_size_change():
    assert explain([1, 2, 3], [1]) == "Transformed 3 items into 1 items"
    assert explain({"rows": [1, 2]}, {"rows": [1, 2, 3, 4]}) == (
        "Transformed 2 items into 4 items"
    )
    assert explain({"rows": [1, 2]}, {"rows": [3, 4]}) is None


def test_priority_pass_fail_before_shrinkage():
    message = explain({"candidates_count": 10}, {"passed": 3, "failed": 7})
    assert message.startswith("Evaluated 10 items")


def test_non_matching_shapes():
    assert explain("plain text", None) is None
    assert explain({"a": 1}, {"b": True}) is None


def test_as_count():
    assert as_count(3) == 3
    assert as_count([1, 2]) == 2
    assert as_count(True) is None
    assert as_count(float("nan")) is None
    assert as_count("3") is None
