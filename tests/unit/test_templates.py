import json
import typing

from pydantic import ValidationError
import pytest

from docker_executor.models import ParameterType, Template, TemplateParameter
from docker_executor.templates import TemplateCatalog


def test_default_catalog():
    catalog = TemplateCatalog.load(None)

    [template] = catalog.list()
    assert template.id == 1
    assert template.image == "tintoy/tfa-multicloud-template:stable"
    assert [(p.name, p.type) for p in template.parameters] == [
        ("app_name", ParameterType.STRING),
        ("aws_instance_count", ParameterType.INTEGER),
    ]


def test_load_from_file(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(
        json.dumps(
            [
                {"id": 7, "name": "Database", "image": "example/db-template:1.2"},
                {
                    "id": 3,
                    "name": "Cache",
                    "image": "example/cache-template:latest",
                    "parameters": [{"name": "size", "type": "integer"}],
                },
            ]
        )
    )

    catalog = TemplateCatalog.load(path)

    assert [t.id for t in catalog.list()] == [3, 7]
    assert catalog.get(3).parameters[0].type == ParameterType.INTEGER
    assert catalog.get(7).parameters == []
    assert catalog.get(99) is None


def test_invalid_file_is_rejected(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps([{"id": 1, "name": "No image", "image": ""}]))

    with pytest.raises(ValidationError):
        TemplateCatalog.from_file(path)


def test_duplicate_ids_are_rejected():
    template = Template(id=1, name="A", image="a:1")

    with pytest.raises(ValueError, match="Duplicate template ID"):
        TemplateCatalog([template, template.model_copy(update={"name": "B"})])


def test_undeclared_parameters():
    template = Template(
        id=1,
        name="Web",
        image="web:1",
        parameters=[TemplateParameter(name="app_name"), TemplateParameter(name="region")],
    )

    assert TemplateCatalog.undeclared_parameters(template, {"app_name": "x"}) == []
    assert TemplateCatalog.undeclared_parameters(
        template, {"zone": "b", "app_name": "x", "color": "red"}
    ) == ["color", "zone"]


def test_annotations_resolve_despite_list_method():
    hints = typing.get_type_hints(TemplateCatalog.undeclared_parameters)

    assert hints["return"] == list[str]
    assert typing.get_type_hints(TemplateCatalog.list)["return"] == list[Template]
