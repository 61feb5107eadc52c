"""Tests for edgellm.models: identifier parsing, descriptors, catalogue."""

from __future__ import annotations

import pytest

from edgellm.models import (
    CATALOG,
    GenerateParams,
    ModelDescriptor,
    get_descriptor,
    parse_identifier,
    resolve_descriptor,
)
from edgellm.models.parser import parameter_count_billions


class TestParseIdentifier:
    @pytest.mark.parametrize(
        "model_id,params,quant,arch",
        [
            ("mlx-community/Llama-3.2-3B-Instruct-4bit", "3B", "4bit", "Llama"),
            ("mlx-community/Qwen1.5-0.5B-Chat-4bit", "0.5B", "4bit", "Qwen"),
            ("mlx-community/TinyLlama-1.1B-Chat-v1.0-4bit", "1.1B", "4bit", "TinyLlama"),
            ("bartowski/gemma-2-2b-it-GGUF", "2B", None, "Gemma"),
            ("TheBloke/Mistral-7B-Instruct-v0.2-GGUF", "7B", None, "Mistral"),
        ],
    )
    def test_extracts_metadata(self, model_id, params, quant, arch):
        parsed = parse_identifier(model_id)
        assert parsed.parameters == params
        assert parsed.quantization == quant
        assert parsed.architecture == arch

    def test_owner_and_name(self):
        parsed = parse_identifier("mlx-community/Llama-3.2-1B-4bit")
        assert parsed.owner == "mlx-community"
        assert parsed.name == "Llama-3.2-1B-4bit"

    def test_bare_name(self):
        parsed = parse_identifier("phi-2")
        assert parsed.owner is None
        assert parsed.architecture == "Phi"
        assert parsed.parameters is None

    def test_parameter_count_billions(self):
        assert parameter_count_billions("1.5B") == 1.5
        assert parameter_count_billions("270M") is None
        assert parameter_count_billions(None) is None


class TestModelDescriptor:
    def test_from_identifier_fills_metadata(self):
        d = ModelDescriptor.from_identifier("mlx-community/Llama-3.2-1B-4bit")
        assert d.name == "Llama-3.2-1B-4bit"
        assert d.parameters == "1B"
        assert d.is_small_model is True

    def test_overrides_win(self):
        d = ModelDescriptor.from_identifier("acme/x-1B", name="Custom", max_context=1024)
        assert d.name == "Custom"
        assert d.max_context == 1024

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            ModelDescriptor(model_id="")

    def test_memory_estimate_from_size(self):
        d = ModelDescriptor(model_id="a/b", estimated_size_gb=1.0)
        assert d.estimated_memory_gb == pytest.approx(1.2)

    @pytest.mark.parametrize(
        "params,expected",
        [("0.5B", 1.0), ("1B", 2.0), ("3B", 6.0), ("7B", 14.0), ("13B", 26.0), ("70B", 140.0)],
    )
    def test_memory_estimate_from_parameters(self, params, expected):
        d = ModelDescriptor(model_id="a/b", parameters=params)
        assert d.estimated_memory_gb == expected

    def test_memory_estimate_unknown(self):
        assert ModelDescriptor(model_id="a/b").estimated_memory_gb == 2.0

    def test_large_model_is_not_small(self):
        assert ModelDescriptor.from_identifier("acme/big-8B").is_small_model is False

    def test_to_dict_lists_stops(self):
        d = ModelDescriptor(model_id="a/b", stop_sequences=("</s>",))
        assert d.to_dict()["stop_sequences"] == ["</s>"]


class TestGenerateParams:
    def test_defaults_are_valid(self):
        assert GenerateParams().validate() == []

    def test_reports_each_problem(self):
        problems = GenerateParams(max_tokens=0, temperature=-1, top_p=0, top_k=-1).validate()
        assert len(problems) == 4

    def test_empty_stop_is_invalid(self):
        assert GenerateParams(stop_sequences=("",)).validate()

    def test_merged_stops_deduplicates_in_order(self):
        params = GenerateParams(stop_sequences=("A", "B"))
        assert params.merged_stops(("B", "C")) == ("A", "B", "C")


class TestCatalog:
    def test_alias_lookup_is_case_insensitive(self):
        assert get_descriptor("TinyLlama-1.1B") is CATALOG["tinyllama-1.1b"]

    def test_lookup_by_model_id(self):
        d = CATALOG["mistral-7b"]
        assert get_descriptor(d.model_id) is d

    def test_resolve_unknown_identifier_parses_it(self):
        d = resolve_descriptor("someone/Phi-3-mini-4bit")
        assert d.architecture == "Phi"
        assert d.quantization == "4bit"

    def test_resolve_unknown_alias_raises(self):
        with pytest.raises(ValueError, match="Unknown model"):
            resolve_descriptor("not-a-model")

    def test_catalog_entries_are_consistent(self):
        for descriptor in CATALOG.values():
            assert "/" in descriptor.model_id
            assert descriptor.max_context > 0
