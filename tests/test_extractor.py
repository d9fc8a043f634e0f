#!/usr/bin/env python3

import tempfile
from pathlib import Path

import pytest

from ffibind.diagnostics import ParseError
from ffibind.extractor import SourceFile, extract, extract_text, parse_float_literal, parse_int_literal
from ffibind.ir import DeclKind, FixedArray, FunctionPointer, Pointer, RawPath, Unit, Unsupported


def test_parse_int_literal():
    assert parse_int_literal("42") == 42
    assert parse_int_literal("0x1F") == 31
    assert parse_int_literal("0o17") == 15
    assert parse_int_literal("0b101") == 5
    assert parse_int_literal("-5") == -5
    assert parse_int_literal("1_000u32") == 1000
    assert parse_int_literal("0xFFu8") == 255
    assert parse_int_literal("1 << 3") is None
    assert parse_int_literal("FOO") is None


def test_parse_float_literal():
    assert parse_float_literal("1.5") == 1.5
    assert parse_float_literal("-2.0f32") == -2.0
    assert parse_float_literal("1e3") == 1000.0
    assert parse_float_literal("3") is None


class TestExposure:
    """Which items are FFI-exposed."""

    def test_no_mangle_extern_function(self):
        result = extract_text(
            """
#[no_mangle]
pub extern "C" fn add(a: i32, b: i32) -> i32 { a + b }

pub extern "C" fn not_exported(a: i32) {}

#[no_mangle]
pub fn rust_abi(a: i32) {}

#[no_mangle]
pub extern "Rust" fn also_rust(a: i32) {}
"""
        )
        assert list(result.declarations) == ["crate::add"]
        add = result.declarations["crate::add"]
        assert add.kind == DeclKind.FUNCTION
        assert [m.name for m in add.members] == ["a", "b"]
        assert add.type == RawPath(("i32",))

    def test_export_name_and_implicit_abi(self):
        result = extract_text(
            """
#[no_mangle]
pub unsafe extern "C" fn first() {}

#[export_name = "renamed_symbol"]
pub extern "C" fn second() {}

#[no_mangle]
pub extern fn third() {}
"""
        )
        assert list(result.declarations) == ["crate::first", "crate::renamed_symbol", "crate::third"]
        assert result.declarations["crate::first"].type == Unit()

    def test_repr_c_and_pub_required(self):
        result = extract_text(
            """
pub struct NoRepr { x: i32 }

#[repr(C)]
struct Private { x: i32 }

#[repr(C)]
pub struct Exposed { x: i32 }

#[derive(Debug)]
#[repr(C)]
pub struct WithDerive { x: i32 }
"""
        )
        assert list(result.declarations) == ["crate::Exposed", "crate::WithDerive"]
        assert set(result.hidden) == {"crate::NoRepr", "crate::Private"}
        assert result.hidden["crate::NoRepr"].kind == "struct"

    def test_extern_block_is_ignored(self):
        result = extract_text(
            """
extern "C" {
    fn puts(s: *const c_char) -> c_int;
}
"""
        )
        assert result.declarations == {}

    def test_inline_module_extends_path(self):
        result = extract_text(
            """
pub mod geometry {
    #[repr(C)]
    pub struct Point { pub x: f32 }

    pub mod deep {
        pub const LIMIT: u32 = 3;
    }
}
"""
        )
        assert list(result.declarations) == ["crate::geometry::Point", "crate::geometry::deep::LIMIT"]
        assert result.declarations["crate::geometry::Point"].module == ("crate", "geometry")

    def test_enum_accepts_primitive_repr(self):
        result = extract_text(
            """
#[repr(u8)]
pub enum Small { A, B }

pub enum Plain { A, B }
"""
        )
        assert list(result.declarations) == ["crate::Small"]
        assert result.declarations["crate::Small"].repr_int == "u8"
        assert "crate::Plain" in result.hidden


class TestShapes:
    """Members, variants, docs and order."""

    def test_struct_fields_in_order_with_docs(self):
        result = extract_text(
            """
/// A point.
#[repr(C)]
pub struct Point {
    /// Horizontal.
    pub x: i32,
    // not a doc comment
    pub y: i32,
    pub z: i32,
}
"""
        )
        point = result.declarations["crate::Point"]
        assert point.docs == ["A point."]
        assert [m.name for m in point.members] == ["x", "y", "z"]
        assert point.members[0].docs == ["Horizontal."]
        assert point.members[1].docs == []
        assert point.location.line == 4

    def test_tuple_struct_field_names(self):
        result = extract_text("#[repr(C)]\npub struct Pair(pub u8, pub u16);\n")
        pair = result.declarations["crate::Pair"]
        assert [m.name for m in pair.members] == ["_0", "_1"]
        assert pair.members[1].type == RawPath(("u16",))

    def test_enum_discriminants(self):
        result = extract_text(
            """
#[repr(C)]
pub enum Level {
    Low,
    Mid = 10,
    High,
    Max = 0xFF,
    Neg = -1,
}
"""
        )
        level = result.declarations["crate::Level"]
        assert [v.discriminant for v in level.variants] == [0, 10, 11, 255, -1]
        assert [v.explicit for v in level.variants] == [False, True, False, True, True]
        assert not level.is_data_enum

    def test_data_enum_variants(self):
        result = extract_text(
            """
#[repr(C, u8)]
pub enum Shape {
    Circle(f32),
    Rect { w: f32, h: f32 },
    Empty,
}
"""
        )
        shape = result.declarations["crate::Shape"]
        assert shape.repr == ("C", "u8")
        assert shape.repr_int == "u8"
        assert shape.is_data_enum
        assert [v.style for v in shape.variants] == ["tuple", "struct", "unit"]
        assert [f.name for f in shape.variants[1].fields] == ["w", "h"]
        assert shape.variants[0].fields[0].name == "_0"

    def test_unsupported_items_are_marked(self):
        result = extract_text(
            """
#[repr(C)]
pub struct Wrapper<T> { v: T }

#[repr(C)]
pub struct Lifetime<'a> { v: &'a u8 }

#[repr(C)]
pub struct Unit;

#[repr(C)]
pub struct Empty {}

#[no_mangle]
pub extern "C" fn pattern((a, b): (i32, i32)) {}
"""
        )
        decls = result.declarations
        assert "generic" in decls["crate::Wrapper"].unsupported_reason
        assert decls["crate::Lifetime"].unsupported_reason is None
        assert "unit" in decls["crate::Unit"].unsupported_reason
        assert "empty" in decls["crate::Empty"].unsupported_reason
        assert "identifier" in decls["crate::pattern"].unsupported_reason

    def test_const_and_alias(self):
        result = extract_text(
            """
/// Maximum.
pub const MAX: u32 = 1 << 4;
const HIDDEN: u32 = 1;
pub type Handle = *mut Inner;
"""
        )
        assert list(result.declarations) == ["crate::MAX", "crate::Handle"]
        max_decl = result.declarations["crate::MAX"]
        assert max_decl.value_text == "1 << 4"
        assert max_decl.docs == ["Maximum."]
        assert result.declarations["crate::Handle"].type == Pointer(RawPath(("Inner",)), mutable=True)


class TestTypeSyntax:
    def _params(self, signature: str):
        result = extract_text(f'#[no_mangle]\npub extern "C" fn f({signature}) {{}}\n')
        return [m.type for m in result.declarations["crate::f"].members]

    def test_pointers_and_references(self):
        a, b, c = self._params("a: *const u8, b: &mut Point, c: &libc::c_char")
        assert a == Pointer(RawPath(("u8",)), mutable=False)
        assert b == Pointer(RawPath(("Point",)), mutable=True)
        assert c == Pointer(RawPath(("libc", "c_char")), mutable=False)

    def test_arrays(self):
        a, b = self._params("a: [u8; 4], b: [i32; BUF_LEN]")
        assert a == FixedArray(RawPath(("u8",)), 4)
        assert b == FixedArray(RawPath(("i32",)), None, length_name="BUF_LEN")

    def test_function_pointers(self):
        (cb, raw) = self._params('cb: Option<extern "C" fn(i32) -> i32>, raw: fn(i32)')
        assert cb == RawPath(
            ("Option",), (FunctionPointer(((None, RawPath(("i32",))),), RawPath(("i32",))),)
        )
        assert isinstance(raw, Unsupported)

    def test_unsupported_syntax(self):
        tup, slice_ref, dyn = self._params("t: (i32, i32), s: &[u8], d: &dyn Fn()")
        assert isinstance(tup, Unsupported)
        assert isinstance(slice_ref, Pointer) and isinstance(slice_ref.pointee, Unsupported)
        assert isinstance(dyn.pointee, Unsupported)

    def test_generic_arguments(self):
        (ptr,) = self._params("p: Option<NonNull<Node>>")
        assert ptr == RawPath(("Option",), (RawPath(("NonNull",), (RawPath(("Node",)),)),))


class TestErrors:
    def test_malformed_source_is_fatal(self):
        with pytest.raises(ParseError) as excinfo:
            extract_text("#[repr(C)]\npub struct Broken {\n    x: i32,\n")
        assert excinfo.value.location is not None

    def test_parse_error_reports_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "lib.rs"
            path.write_text("pub fn (")
            with pytest.raises(ParseError) as excinfo:
                extract([SourceFile(path=path)])
            assert excinfo.value.location.file == path
            assert "lib.rs" in str(excinfo.value.to_diagnostic())

    def test_duplicate_definition_warns(self):
        result = extract_text(
            """
#[repr(C)]
pub struct Twice { a: i32 }
#[repr(C)]
pub struct Twice { b: i32 }
"""
        )
        assert [m.name for m in result.declarations["crate::Twice"].members] == ["a"]
        assert len(result.diagnostics) == 1
        assert not result.diagnostics[0].is_error
