import json
from pathlib import Path

import pytest

from procflow.contracts import StepKind
from procflow.exceptions import DefinitionValidationError
from procflow.loader import (
    dump_definition,
    load_definition,
    loads_definition,
    parse_definition,
    save_definition,
)

FIXTURE = Path(__file__).resolve().parents[1] / "fixtures" / "approval.yaml"


def test_load_yaml_fixture():
    definition = load_definition(FIXTURE)

    assert definition.id == "approval"
    assert definition.version == "1"
    assert definition.initial_step_id == "route"
    assert [s.kind for s in definition.steps] == [
        StepKind.DECISION,
        StepKind.INTERACTION,
        StepKind.SCHEDULED,
        StepKind.SCHEDULED,
    ]
    review = definition.get_step("review")
    assert [r.target_step_id for r in review.routes] == ["done", "rejected"]
    assert definition.variables == {"amount": 0, "currency": "EUR"}


def test_load_json_file(tmp_path):
    path = tmp_path / "simple.json"
    path.write_text(
        json.dumps(
            {
                "id": "simple",
                "initial_step_id": "only",
                "steps": [{"id": "only", "kind": "business", "configuration": {"serviceName": "x"}}],
            }
        )
    )

    definition = load_definition(path)

    assert definition.get_step("only").configuration == {"serviceName": "x"}


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_definition(tmp_path / "nope.yaml")


@pytest.mark.parametrize("text", ["", "   \n", "id: [unclosed", "- just\n- a list\n"])
def test_unusable_content(text):
    with pytest.raises(DefinitionValidationError):
        loads_definition(text)


def test_schema_errors_are_wrapped():
    with pytest.raises(DefinitionValidationError) as exc:
        parse_definition({"id": "x", "steps": [{"id": "a", "type": "business"}]})
    assert exc.value.field in ("initialStepId", "initial_step_id")


def test_dump_and_save_keep_authored_fields(tmp_path):
    definition = load_definition(FIXTURE)

    dumped = json.loads(dump_definition(definition, "json"))
    assert dumped["initialStepId"] == "route"
    assert "routes" not in dumped["steps"][1]
    assert dumped["steps"][1]["transitions"][0]["targetStepId"] == "done"

    path = tmp_path / "copy.yaml"
    save_definition(definition, path)
    reloaded = load_definition(path)
    assert reloaded.steps == definition.steps

    with pytest.raises(ValueError):
        dump_definition(definition, "xml")
