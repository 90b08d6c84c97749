import pytest

from callcheck.checklists import normalize_checklist
from callcheck.errors import ValidationError
from callcheck.schemas import AdvancedChecklist, Checklist


def staged(total_score=None, weight=10):
    data = {
        "name": "Sales script",
        "type": "advanced",
        "stages": [
            {
                "name": "Closing",
                "order": 2,
                "criteria": [{"title": "Next step agreed", "weight": 5, "isBinary": True}],
            },
            {
                "name": "Opening",
                "order": 1,
                "criteria": [
                    {
                        "title": "Greeting",
                        "weight": weight,
                        "max": {"description": "Full greeting", "score": 10},
                        "mid": {"description": "Partial", "score": 5},
                        "min": {"description": "None", "score": 0},
                    },
                ],
            },
        ],
    }
    if total_score is not None:
        data["totalScore"] = total_score
    return data


class TestSimpleChecklist:
    def test_defaults_are_filled(self):
        checklist = normalize_checklist({"items": [{"title": "Greeting"}, {"id": "close"}]})

        assert isinstance(checklist, Checklist)
        assert checklist.id.startswith("checklist-")
        assert checklist.name == "Checklist"
        assert checklist.version == "1.0"

        greeting, close = checklist.items
        assert greeting.id == "item-1"
        assert greeting.type == "recommended"
        assert greeting.confidence_threshold == 0.6
        assert greeting.criteria.llm_hint == "Greeting"
        assert close.title == "close"

    def test_patterns_accept_semicolon_strings(self):
        checklist = normalize_checklist({
            "items": [{
                "id": "greet",
                "title": "Greeting",
                "type": "MANDATORY",
                "criteria": {"positive_patterns": "hello; good afternoon ;", "negative_patterns": ["", "bye"]},
            }]
        })

        item = checklist.items[0]
        assert item.type == "mandatory"
        assert item.criteria.positive_patterns == ["hello", "good afternoon"]
        assert item.criteria.negative_patterns == ["bye"]

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError):
            normalize_checklist({"name": "Empty", "items": []})

        with pytest.raises(ValidationError):
            normalize_checklist({"name": "Missing"})

    def test_item_needs_id_or_title(self):
        with pytest.raises(ValidationError):
            normalize_checklist({"items": [{"type": "mandatory"}]})

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError) as exc:
            normalize_checklist({"items": [{"id": "a", "title": "A"}, {"id": "a", "title": "B"}]})
        assert "Duplicate item id 'a'" in exc.value.message

    def test_threshold_out_of_range(self):
        with pytest.raises(ValidationError):
            normalize_checklist({"items": [{"id": "a", "title": "A", "confidence_threshold": 1.5}]})

        with pytest.raises(ValidationError):
            normalize_checklist({"items": [{"id": "a", "title": "A", "confidence_threshold": "high"}]})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            normalize_checklist(["not", "a", "checklist"])

    def test_existing_model_passes_through(self):
        checklist = normalize_checklist({"id": "c1", "name": "C1", "items": [{"id": "a", "title": "A"}]})
        assert normalize_checklist(checklist) is checklist


class TestAdvancedChecklist:
    def test_stages_sorted_and_numbered(self):
        checklist = normalize_checklist(staged())

        assert isinstance(checklist, AdvancedChecklist)
        assert [stage.name for stage in checklist.stages] == ["Opening", "Closing"]
        greeting = checklist.stages[0].criteria[0]
        assert greeting.number == "1.1"
        assert greeting.id == "criterion-1.1"
        assert checklist.stages[1].criteria[0].number == "2.1"
        assert checklist.total_score == 15

    def test_binary_flag(self):
        checklist = normalize_checklist(staged())
        assert checklist.stages[1].criteria[0].binary is True
        assert checklist.stages[0].criteria[0].binary is False

    def test_declared_total_must_match_weights(self):
        assert normalize_checklist(staged(total_score=15)).total_score == 15

        with pytest.raises(ValidationError) as exc:
            normalize_checklist(staged(total_score=20))
        assert "totalScore" in exc.value.message

    def test_level_above_weight_rejected(self):
        with pytest.raises(ValidationError):
            normalize_checklist(staged(weight=8))

    def test_weight_defaults_to_max_level(self):
        checklist = normalize_checklist({
            "stages": [{"name": "Only", "criteria": [{"title": "Pitch", "max": {"score": 4}}]}]
        })
        assert checklist.stages[0].criteria[0].weight == 4
        assert checklist.total_score == 4

    def test_criterion_without_weight_or_levels_rejected(self):
        with pytest.raises(ValidationError):
            normalize_checklist({"stages": [{"name": "Only", "criteria": [{"title": "Pitch"}]}]})

    def test_duplicate_criterion_ids_rejected(self):
        with pytest.raises(ValidationError):
            normalize_checklist({
                "stages": [
                    {"name": "A", "criteria": [{"id": "x", "title": "One", "weight": 1}]},
                    {"name": "B", "criteria": [{"id": "x", "title": "Two", "weight": 1}]},
                ]
            })
