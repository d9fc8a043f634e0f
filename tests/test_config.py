#!/usr/bin/env python3

import json
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from ffibind.config import CONFIG_FILE_NAME, BindgenConfig, EnumLayout, TypeOverride
from ffibind.diagnostics import Target


@pytest.fixture
def temp_project():
    """Create a temporary directory for test projects."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


def test_defaults():
    config = BindgenConfig()
    assert config.targets == [Target.C, Target.JAVA]
    assert config.header_name() == "backend.h"
    assert config.java.package_path() == Path("com/example/ffi")
    assert config.enum_layout.tag_type == "repr"
    assert config.pointer_width == 64


def test_save_and_load(temp_project):
    config = BindgenConfig(lib_name="engine", targets=[Target.JAVA])
    config.overrides["Handle"] = TypeOverride(c_type="engine_t")
    config.java.package = "org.engine"
    path = temp_project / CONFIG_FILE_NAME
    config.save_to_file(path)

    data = json.loads(path.read_text())
    assert data["lib_name"] == "engine"
    assert data["targets"] == ["java"]

    loaded = BindgenConfig.load_from_file(path)
    assert loaded == config
    assert loaded.header_name() == "engine.h"


def test_find_project_config(temp_project):
    (temp_project / CONFIG_FILE_NAME).write_text(json.dumps({"lib_name": "found"}))
    nested = temp_project / "crate" / "src"
    nested.mkdir(parents=True)
    config = BindgenConfig.find_project_config(nested)
    assert config is not None
    assert config.lib_name == "found"


def test_override_lookup_prefers_qualified_name():
    config = BindgenConfig(
        overrides={
            "Point": TypeOverride(rename="Simple"),
            "crate::geom::Point": TypeOverride(rename="Qualified"),
        }
    )
    assert config.override_for("crate::geom::Point", "Point").rename == "Qualified"
    assert config.override_for("crate::other::Point", "Point").rename == "Simple"
    assert config.override_for("crate::Line", "Line") is None


def test_custom_type_per_target():
    override = TypeOverride(c_type="handle_t", java_type="long")
    assert override.custom_type(Target.C) == "handle_t"
    assert override.custom_type(Target.JAVA) == "long"


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        BindgenConfig(pointer_width=12)
    with pytest.raises(ValidationError):
        EnumLayout(tag_type="u128")
    with pytest.raises(ValidationError):
        BindgenConfig.model_validate({"targets": ["python"]})
