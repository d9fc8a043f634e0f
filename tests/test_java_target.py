#!/usr/bin/env python3

from pathlib import Path

from ffibind.config import BindgenConfig, JavaOptions
from ffibind.diagnostics import DiagnosticKind, Target
from ffibind.pipeline import generate_from_text
from ffibind.targets import camel_case, snake_case

PACKAGE_DIR = Path("java/com/example/ffi")

POINT_SOURCE = """
#[repr(C)]
pub struct Point {
    pub x: i32,
    pub y: i32,
}

#[no_mangle]
pub extern "C" fn dist(a: Point, b: Point) -> f64 {
    0.0
}
"""

POINT_CLASS = """// Generated by ffibind. Do not edit.
package com.example.ffi;

public final class Point {
    private final int x;
    private final int y;

    public Point(int x, int y) {
        this.x = x;
        this.y = y;
    }

    public int getX() {
        return x;
    }

    public int getY() {
        return y;
    }
}
"""


def java_files(text: str, config: BindgenConfig | None = None):
    result = generate_from_text(text, config)
    files = {
        path.relative_to(PACKAGE_DIR).as_posix(): content
        for path, content in result.outputs[Target.JAVA].files.items()
    }
    return result, files


def java_errors(result):
    return [d for d in result.diagnostics.for_target(Target.JAVA) if d.is_error]


def test_case_helpers():
    assert camel_case("point_distance") == "pointDistance"
    assert camel_case("audio_engine", upper=True) == "AudioEngine"
    assert camel_case("URL_parser") == "urlParser"
    assert snake_case("rawBytes") == "raw_bytes"
    assert snake_case("HTTPServer") == "http_server"


class TestStructsByValue:
    """Java has no value-struct ABI."""

    def test_struct_by_value_function_is_rejected(self):
        result, files = java_files(POINT_SOURCE)
        errors = java_errors(result)
        assert [e.kind for e in errors] == [DiagnosticKind.TARGET_MAPPING] * 2
        assert errors[0].declarations == ["crate::dist", "crate::Point"]
        assert "by value" in errors[0].message
        # Point is only used by dist, so it is omitted as well
        assert errors[1].declarations == ["crate::Point", "crate::dist"]
        assert files == {}
        assert not result.outputs[Target.JAVA].succeeded
        assert result.outputs[Target.C].succeeded

    def test_struct_reachable_elsewhere_is_kept(self):
        source = POINT_SOURCE + """
#[no_mangle]
pub extern "C" fn point_len(p: *const Point) -> f64 {
    0.0
}
"""
        result, files = java_files(source)
        assert len(java_errors(result)) == 1
        assert files["Point.java"] == POINT_CLASS
        assert files["NativeBindings.java"] == (
            "// Generated by ffibind. Do not edit.\n"
            "package com.example.ffi;\n"
            "\n"
            "/** Native bindings for `crate`. */\n"
            "public final class NativeBindings {\n"
            "    static {\n"
            '        System.loadLibrary("backend");\n'
            "    }\n"
            "\n"
            "    private NativeBindings() {\n"
            "    }\n"
            "\n"
            "    // JNI signature: (J)D\n"
            "    public static native double pointLen(long p);\n"
            "}\n"
        )

    def test_union_is_not_mirrored(self):
        result, files = java_files(
            """
#[repr(C)]
pub union Bits { i: i32, f: f32 }

#[repr(C)]
pub struct Holder { bits: Bits }
"""
        )
        warnings = [d for d in result.diagnostics.for_target(Target.JAVA) if not d.is_error]
        assert "union `crate::Bits`" in warnings[0].message
        errors = java_errors(result)
        assert len(errors) == 1
        assert errors[0].declarations == ["crate::Holder", "crate::Bits"]
        assert files == {}


class TestUnsignedWidening:
    def test_each_type_is_reported_once(self):
        result, files = java_files(
            """
#[repr(C)]
pub struct Sizes { a: u8, b: u16, c: u32, d: u64, e: u8 }

#[no_mangle]
pub extern "C" fn scale(v: u32, w: u64) -> u16 { 0 }
"""
        )
        widening = result.diagnostics.of_kind(DiagnosticKind.UNSIGNED_WIDENING)
        assert len(widening) == 4
        assert all(d.target == Target.JAVA and not d.is_error for d in widening)
        assert "`u8` is widened to `short`" in widening[0].message
        assert "`u64` has no unsigned Java counterpart" in widening[3].message
        assert all(d.declarations == ["crate::Sizes"] for d in widening)
        assert widening[0].location.startswith("<memory>:3:")

        sizes = files["Sizes.java"]
        assert "    private final short a;\n    private final int b;\n    private final long c;\n" in sizes
        assert "    private final long d;\n    private final short e;\n" in sizes
        assert "(u16, u32, u64, u8)" in sizes

        native = files["NativeBindings.java"]
        assert "    // JNI signature: (JJ)I\n    public static native int scale(long v, long w);" in native
        assert "(u16, u32, u64)" in native

    def test_warning_names_the_first_user(self):
        result, _ = java_files('#[no_mangle]\npub extern "C" fn f(x: u8) {}\n')
        (warning,) = result.diagnostics.of_kind(DiagnosticKind.UNSIGNED_WIDENING)
        assert warning.declarations == ["crate::f"]
        assert warning.location is not None

    def test_no_note_without_unsigned_values(self):
        _, files = java_files("#[repr(C)]\npub struct Signed { a: i8, b: i64 }\n")
        assert "Unsigned" not in files["Signed.java"]
        assert "    private final byte a;\n    private final long b;\n" in files["Signed.java"]


class TestFunctions:
    def test_callbacks(self):
        result, files = java_files(
            """
#[no_mangle]
pub extern "C" fn set_handler(
    cb: extern "C" fn(user_data: *mut c_void, code: i32) -> bool,
    user_data: *mut c_void,
) {}

#[no_mangle]
pub extern "C" fn bad_handler(cb: extern "C" fn(i32)) {}
"""
        )
        native = files["NativeBindings.java"]
        assert "    public interface SetHandlerCbCallback {\n        boolean invoke(int code);\n    }" in native
        assert "    // JNI signature: (Lcom/example/ffi/NativeBindings$SetHandlerCbCallback;)V\n" in native
        assert "    public static native void setHandler(SetHandlerCbCallback cb);" in native
        errors = java_errors(result)
        assert len(errors) == 1
        assert errors[0].declarations == ["crate::bad_handler"]
        assert "user_data" in errors[0].message

    def test_pointer_and_length_become_array(self):
        _, files = java_files(
            """
#[no_mangle]
pub extern "C" fn sum(values: *const i32, values_len: usize) -> i64 { 0 }

#[no_mangle]
pub extern "C" fn checksum(data: *const u8, len: usize) -> u32 { 0 }

#[no_mangle]
pub extern "C" fn raw(data: *const u8, count: i32) {}
"""
        )
        native = files["NativeBindings.java"]
        assert "    // JNI signature: ([I)J\n    public static native long sum(int[] values);" in native
        assert "    // JNI signature: ([S)J\n    public static native long checksum(short[] data);" in native
        assert "    // JNI signature: (JI)V\n    public static native void raw(long data, int count);" in native

    def test_keyword_method_name(self):
        result, files = java_files('#[no_mangle]\npub extern "C" fn native() {}\n')
        assert "public static native void native_();" in files["NativeBindings.java"]
        warnings = [d for d in result.diagnostics.for_target(Target.JAVA) if not d.is_error]
        assert "Java keyword" in warnings[0].message

    def test_module_classes(self):
        _, files = java_files(
            """
pub mod audio_engine {
    #[no_mangle]
    pub extern "C" fn start_stream() {}
}
"""
        )
        assert list(files) == ["AudioEngine.java"]
        engine = files["AudioEngine.java"]
        assert "/** Native bindings for `crate::audio_engine`. */\npublic final class AudioEngine {" in engine
        assert "    public static native void startStream();" in engine

    def test_enum_parameters_use_the_value_type(self):
        _, files = java_files(
            """
#[repr(C)]
pub enum Color { Red, Green }

#[no_mangle]
pub extern "C" fn paint(c: Color) -> Color { c }
"""
        )
        assert "    // JNI signature: (I)I\n    public static native int paint(int c);" in files["NativeBindings.java"]


class TestTypes:
    def test_enum_with_narrow_repr(self):
        _, files = java_files("#[repr(u8)]\npub enum Mode { Off, On = 2 }\n")
        mode = files["Mode.java"]
        assert "public enum Mode {\n    Off((short) 0),\n    On((short) 2);\n" in mode
        assert "    private final short value;\n" in mode
        assert "    public static Mode fromValue(short value) {\n" in mode
        assert 'throw new IllegalArgumentException("Invalid value for Mode: " + value);' in mode

    def test_c_enum_values_are_ints(self):
        _, files = java_files("/// Colors.\n#[repr(C)]\npub enum Color { Red, Green = 4 }\n")
        color = files["Color.java"]
        assert color.startswith("// Generated by ffibind. Do not edit.\npackage com.example.ffi;\n\n/** Colors. */\n")
        assert "    Red(0),\n    Green(4);\n" in color
        assert "    public int getValue() {\n" in color

    def test_data_enum_exposes_its_tag(self):
        _, files = java_files("#[repr(C)]\npub enum Shape { Circle(f32), Empty }\n")
        tag = files["ShapeTag.java"]
        assert "Discriminants of `Shape`" in tag
        assert "public enum ShapeTag {\n    Circle(0),\n    Empty(1);\n" in tag

    def test_array_fields(self):
        _, files = java_files("#[repr(C)]\npub struct Buf { raw_bytes: [u8; 4], count: i32 }\n")
        buf = files["Buf.java"]
        assert "    public static final int RAW_BYTES_LENGTH = 4;\n" in buf
        assert "    private final short[] rawBytes;\n" in buf
        assert "    public Buf(short[] rawBytes, int count) {\n" in buf
        assert "    public short[] getRawBytes() {\n" in buf

    def test_constants(self):
        _, files = java_files(
            """
/// Upper bound.
pub const MAX: u32 = 10;
pub const RATE: f32 = 0.5;
pub const ENABLED: bool = true;
pub const BIG: u64 = 0xFFFF_FFFF_FFFF_FFFF;
pub const STEP: i16 = -2;
"""
        )
        native = files["NativeBindings.java"]
        assert "    /** Upper bound. */\n    public static final long MAX = 10L;\n" in native
        assert "    public static final float RATE = 0.5f;\n" in native
        assert "    public static final boolean ENABLED = true;\n" in native
        assert "    public static final long BIG = -1L;\n" in native
        assert "    public static final short STEP = -2;\n" in native
        # no native methods, so no library loading
        assert "loadLibrary" not in native

    def test_java_type_override(self):
        config = BindgenConfig.model_validate({"overrides": {"Handle": {"java_type": "java.nio.ByteBuffer"}}})
        result, files = java_files(
            """
#[repr(C)]
pub struct Handle { fd: i32 }

#[no_mangle]
pub extern "C" fn use_handle(h: Handle) {}
""",
            config,
        )
        assert java_errors(result) == []
        assert "Handle.java" not in files
        native = files["NativeBindings.java"]
        assert "    // JNI signature: (Ljava/nio/ByteBuffer;)V\n" in native
        assert "public static native void useHandle(java.nio.ByteBuffer h);" in native


def test_package_and_class_options():
    config = BindgenConfig(
        lib_name="engine",
        java=JavaOptions(package="org.sample.native_api", class_name="Engine", source_dir="src/main/java"),
    )
    result = generate_from_text('#[no_mangle]\npub extern "C" fn start() {}\n', config)
    files = result.outputs[Target.JAVA].files
    path = Path("src/main/java/org/sample/native_api/Engine.java")
    assert list(files) == [path]
    assert "package org.sample.native_api;\n" in files[path]
    assert 'System.loadLibrary("engine");' in files[path]


class TestNameCollisions:
    def test_struct_named_like_the_module_class(self):
        result, files = java_files(
            """
#[repr(C)]
pub struct NativeBindings { fd: i32 }

#[no_mangle]
pub extern "C" fn take(p: *const NativeBindings) {}
"""
        )
        errors = java_errors(result)
        assert errors[0].declarations == ["crate::take", "crate::NativeBindings"]
        assert "already belongs to `crate::NativeBindings`" in errors[0].message
        assert not result.outputs[Target.JAVA].succeeded
        assert result.outputs[Target.C].succeeded

    def test_module_class_named_like_a_struct(self):
        result, files = java_files(
            """
#[repr(C)]
pub struct Point { x: i32 }

pub mod point {
    #[no_mangle]
    pub extern "C" fn area() -> i32 { 0 }
}
"""
        )
        errors = java_errors(result)
        assert len(errors) == 1
        assert errors[0].declarations == ["crate::point::area", "crate::Point"]
        assert list(files) == ["Point.java"]
        assert "public final class Point {" in files["Point.java"]

    def test_struct_after_module_class(self):
        result, files = java_files(
            """
pub mod point {
    #[no_mangle]
    pub extern "C" fn area() -> i32 { 0 }
}

#[repr(C)]
pub struct Point { x: i32 }
"""
        )
        errors = java_errors(result)
        assert len(errors) == 1
        assert errors[0].declarations == ["crate::Point"]
        assert "the class of module `crate::point`" in errors[0].message
        assert "public static native int area();" in files["Point.java"]

    def test_functions_with_the_same_method_name(self):
        result, files = java_files(
            """
#[no_mangle]
pub extern "C" fn get_x() -> i32 { 0 }

#[no_mangle]
pub extern "C" fn getX() -> i32 { 0 }
"""
        )
        errors = java_errors(result)
        assert len(errors) == 1
        assert errors[0].declarations == ["crate::getX", "crate::get_x"]
        assert "Java method `NativeBindings.getX`" in errors[0].message
        assert files["NativeBindings.java"].count("public static native int getX();") == 1

    def test_constants_with_the_same_field_name(self):
        result, files = java_files(
            """
pub const LIMIT: i32 = 1;

pub mod other {
    pub const LIMIT: i32 = 2;
}
"""
        )
        # different module classes, so no collision
        assert java_errors(result) == []
        assert "LIMIT = 1;" in files["NativeBindings.java"]
        assert "LIMIT = 2;" in files["Other.java"]
