# SPDX-License-Identifier: MIT
"""Tests for unibuild.core.model."""

import json

import pytest

from unibuild.core.errors import ConfigurationError, MissingFallbackError
from unibuild.core.model import (
    CompilerModel,
    Inline,
    KeyValue,
    ListOption,
    ResponseFile,
    Selectable,
    ToolModel,
    ValueOption,
    load_model,
    parse_encoding,
    parse_option,
)


class TestParseOption:
    def test_selectable(self):
        opt = parse_option("debug", {"type": "selectable", "command": {"true": "-g", "false": ""}})
        assert isinstance(opt, Selectable)
        assert opt.commands == {"true": "-g", "false": ""}

    def test_selectable_requires_false(self):
        with pytest.raises(MissingFallbackError) as exc_info:
            parse_option("debug", {"type": "selectable", "command": {"true": "-g"}})
        assert exc_info.value.key == "debug"
        assert exc_info.value.fallback == "false"

    def test_key_value(self):
        opt = parse_option(
            "optimize",
            {"type": "keyValue", "command": "-O", "enum": {"speed": "3", "default": "0"}},
        )
        assert isinstance(opt, KeyValue)
        assert opt.command == "-O"

    def test_key_value_requires_default(self):
        with pytest.raises(MissingFallbackError) as exc_info:
            parse_option("optimize", {"type": "keyValue", "command": "-O", "enum": {"speed": "3"}})
        assert exc_info.value.fallback == "default"

    def test_value_and_list(self):
        assert isinstance(parse_option("cpu", {"type": "value", "command": "-mcpu="}), ValueOption)
        assert isinstance(parse_option("misc", {"type": "list", "command": ""}), ListOption)

    def test_prefix_suffix(self):
        opt = parse_option("x", {"type": "value", "command": "-x", "prefix": "[", "suffix": "]"})
        assert opt.prefix == "["
        assert opt.suffix == "]"

    def test_invalid_type(self):
        with pytest.raises(ConfigurationError, match="invalid type"):
            parse_option("x", {"type": "bool"})

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            parse_option("x", "-O2")


class TestParseEncoding:
    def test_encodings(self):
        assert parse_encoding("UTF8") == "utf-8"
        assert parse_encoding("utf8") == "utf-8-sig"
        assert parse_encoding("utf16") == "utf-16"
        assert parse_encoding("gbk") is None
        assert parse_encoding(None) is None


class TestToolModel:
    def test_requires_path_and_output(self):
        with pytest.raises(ConfigurationError, match=r"\$path"):
            ToolModel.from_dict("c/cpp", "c", {"$output": "-o ${out}"})
        with pytest.raises(ConfigurationError, match=r"\$output"):
            ToolModel.from_dict("c/cpp", "c", {"$path": "bin/cc"})

    def test_inline_by_default(self):
        tool = ToolModel.from_dict("c/cpp", "c", {"$path": "bin/cc", "$output": "-o ${out}"})
        assert tool.invoke == Inline()

    def test_response_file_extension_per_role(self):
        raw = {
            "$path": "bin/tool",
            "$output": "-o ${out}",
            "$invoke": {"useFile": True, "body": "--via ${value}"},
            "$encoding": "UTF8",
        }
        assert ToolModel.from_dict("c/cpp", "c", raw).invoke == ResponseFile(
            "--via ${value}", ".__i", "utf-8"
        )
        assert ToolModel.from_dict("asm", "asm", raw).invoke.extension == "._ia"
        assert ToolModel.from_dict("linker", "linker", raw).invoke.extension == ".lnp"

    def test_response_file_needs_body(self):
        raw = {"$path": "bin/tool", "$output": "-o ${out}", "$invoke": {"useFile": True}}
        with pytest.raises(ConfigurationError, match="body"):
            ToolModel.from_dict("linker", "linker", raw)

    def test_reserved_keys_are_not_options(self):
        raw = {
            "$path": "bin/cc",
            "$output": "-o ${out} ${in}",
            "$default": ["-c"],
            "$includes": {"body": "-I${value}"},
            "warnings": {"type": "selectable", "command": {"true": "-Wall", "false": ""}},
        }
        tool = ToolModel.from_dict("c/cpp", "c", raw)
        assert list(tool.options) == ["warnings"]
        assert tool.default == ["-c"]
        assert tool.includes is not None
        assert tool.includes.body == "-I${value}"

    def test_language_option_with_exclude(self):
        raw = {
            "$path": "bin/cc",
            "$output": "-o ${out} ${in}",
            "$language-cpp": {
                "type": "keyValue",
                "command": "-std=",
                "enum": {"default": "c++11"},
                "exclude": ["-std=c99"],
            },
        }
        tool = ToolModel.from_dict("c/cpp", "cpp", raw)
        assert tool.languages["language-cpp"].exclude == ("-std=c99",)

    def test_command_location_validated(self):
        raw = {"$path": "bin/ld", "$output": "-o ${out}", "$commandLocation": "middle"}
        with pytest.raises(ConfigurationError, match="commandLocation"):
            ToolModel.from_dict("linker", "linker", raw)

    def test_output_bin_needs_name(self):
        raw = {
            "$path": "bin/ld",
            "$output": "-o ${out}",
            "$outputBin": [{"toolPath": "bin/objcopy", "command": "-O ihex"}],
        }
        with pytest.raises(ConfigurationError, match="name"):
            ToolModel.from_dict("linker", "linker", raw)


class TestCompilerModel:
    def test_requires_groups(self):
        with pytest.raises(ConfigurationError):
            CompilerModel.from_dict({"name": "x"})

    def test_err_level_must_be_integer(self):
        with pytest.raises(ConfigurationError, match="ERR_LEVEL"):
            CompilerModel.from_dict({"name": "x", "ERR_LEVEL": "high", "groups": {}})

    def test_id_defaults_to_name(self):
        model = CompilerModel.from_dict({"name": "GNU", "groups": {}})
        assert model.id == "GNU"

    def test_global_options_merged_ahead(self):
        data = {
            "groups": {
                "c/cpp": {"$path": "cc", "$output": "-o ${out}", "own": {"type": "value", "command": "-o"}},
                "linker": {"$path": "ld", "$output": "-o ${out}"},
            },
            "global": {
                "cpu": {"type": "value", "command": "-mcpu=", "group": ["c/cpp", "linker"]},
                "fpu": {"type": "value", "command": "-mfpu=", "group": ["c/cpp"]},
            },
        }
        model = CompilerModel.from_dict(data)
        keys = [k for k in model.groups["c/cpp"] if not k.startswith("$")]
        # Later globals end up in front
        assert keys == ["fpu", "cpu", "own"]
        assert "cpu" in model.groups["linker"]
        assert "fpu" not in model.groups["linker"]

    def test_global_without_group(self):
        data = {"groups": {}, "global": {"cpu": {"type": "value", "command": "-mcpu="}}}
        with pytest.raises(ConfigurationError, match="group"):
            CompilerModel.from_dict(data)

    def test_global_duplicates_group_key(self):
        data = {
            "groups": {"c/cpp": {"cpu": {"type": "value", "command": "-x"}}},
            "global": {"cpu": {"type": "value", "command": "-mcpu=", "group": ["c/cpp"]}},
        }
        with pytest.raises(ConfigurationError, match="already exists"):
            CompilerModel.from_dict(data)

    def test_input_not_modified(self):
        data = {
            "groups": {"c/cpp": {"$path": "cc", "$output": "-o ${out}"}},
            "global": {"cpu": {"type": "value", "command": "-mcpu=", "group": ["c/cpp"]}},
        }
        CompilerModel.from_dict(data)
        assert "cpu" not in data["groups"]["c/cpp"]

    def test_load_model(self, tmp_path):
        path = tmp_path / "gcc.model.json"
        path.write_text(
            json.dumps({"name": "GCC", "id": "GCC", "ERR_LEVEL": 1, "groups": {}}),
            encoding="utf-8",
        )
        model = load_model(path)
        assert model.id == "GCC"
        assert model.err_level == 1

    def test_load_model_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="failed to load"):
            load_model(path)
