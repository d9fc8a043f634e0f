#!/usr/bin/env python3

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ffibind.diagnostics import Target

CONFIG_FILE_NAME = "ffibind.json"


class TypeOverride(BaseModel):
    """Per-declaration override rule."""

    rename: str | None = None  # new target identifier
    skip: bool = False  # exclude the declaration from every output
    c_type: str | None = None  # replaces the default C mapping for references
    java_type: str | None = None  # replaces the default Java mapping for references

    def custom_type(self, target: Target) -> str | None:
        return self.c_type if target == Target.C else self.java_type


class EnumLayout(BaseModel):
    """Layout of data-carrying enums in C."""

    # "repr" follows the enum's primitive repr, falling back to a C enum;
    # otherwise an integer type name such as "u8" or "i32".
    tag_type: str = "repr"
    union_field: str = "payload"

    @field_validator("tag_type")
    @classmethod
    def _check_tag_type(cls, value: str) -> str:
        allowed = {"repr", "u8", "u16", "u32", "u64", "i8", "i16", "i32", "i64"}
        if value not in allowed:
            raise ValueError(f"tag_type must be one of {sorted(allowed)}")
        return value


class COptions(BaseModel):
    header_name: str | None = None  # defaults to "<lib_name>.h"
    custom_code: str = ""  # inserted after the includes, e.g. opaque typedefs


class JavaOptions(BaseModel):
    package: str = "com.example.ffi"
    class_name: str = "NativeBindings"
    source_dir: str = "java"  # under the output directory

    def package_path(self) -> Path:
        return Path(*self.package.split("."))


class BindgenConfig(BaseModel):
    """Configuration for a binding generation run."""

    lib_name: str = "backend"
    targets: list[Target] = Field(default_factory=lambda: [Target.C, Target.JAVA])

    overrides: dict[str, TypeOverride] = Field(default_factory=dict)
    enum_layout: EnumLayout = Field(default_factory=EnumLayout)
    c: COptions = Field(default_factory=COptions)
    java: JavaOptions = Field(default_factory=JavaOptions)

    # Platform widths for isize/usize and c_long/c_ulong
    pointer_width: int = 64
    c_long_width: int = 64

    @field_validator("pointer_width", "c_long_width")
    @classmethod
    def _check_width(cls, value: int) -> int:
        if value not in (16, 32, 64):
            raise ValueError("width must be 16, 32 or 64")
        return value

    def header_name(self) -> str:
        return self.c.header_name or f"{self.lib_name}.h"

    def override_for(self, qualified_name: str, name: str) -> TypeOverride | None:
        """Look up an override by qualified name first, then by simple name."""
        return self.overrides.get(qualified_name) or self.overrides.get(name)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "BindgenConfig":
        """Load configuration from a JSON file."""
        args = json.loads(config_path.read_text())
        return cls.model_validate(args)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        data = self.model_dump(mode="json")
        config_path.write_text(json.dumps(data, indent=2))

    @classmethod
    def find_project_config(cls, start_path: Path) -> Optional["BindgenConfig"]:
        """Find configuration by searching up the directory tree."""
        current = start_path.resolve()
        while current != current.parent:
            config_file = current / CONFIG_FILE_NAME
            if config_file.exists():
                return cls.load_from_file(config_file)
            current = current.parent
        return None
