import json
import os

import pytest

from comfy_orchestrator.errors import GraphFormatError
from comfy_orchestrator.graph import Edge, Graph, NodeRole, convert_native_workflow, role_for

WORKFLOW_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "workflows")


class TestFromWire:
    """Test parsing API-format JSON into a Graph."""

    def test_edges_become_edge_values(self, api_workflow):
        graph = Graph.from_wire(api_workflow)

        sampler = graph["s-42"]
        assert sampler.inputs["positive"] == Edge("x3", 0)
        assert sampler.inputs["negative"] == Edge("907", 0)
        assert sampler.inputs["steps"] == 20

    def test_roles_derived_from_class_type(self, template_graph):
        assert template_graph["ckpt-a1"].role == NodeRole.LOADER
        assert template_graph["s-42"].role == NodeRole.SAMPLER
        assert template_graph["11"].role == NodeRole.DECODE
        assert template_graph["0"].role == NodeRole.SAVE
        assert role_for("SomeCustomNode") == NodeRole.OTHER

    def test_integer_node_ids_are_strings(self):
        graph = Graph.from_wire({7: {"class_type": "VAEDecode", "inputs": {"samples": [3, 0]}}})

        assert "7" in graph
        assert graph["7"].inputs["samples"] == Edge("3", 0)

    def test_title_from_meta(self, template_graph):
        assert template_graph["ckpt-a1"].title == "Load Checkpoint"
        assert template_graph["907"].title is None

    def test_rejects_non_dict(self):
        with pytest.raises(GraphFormatError):
            Graph.from_wire(["not", "a", "graph"])

    def test_rejects_missing_class_type(self):
        with pytest.raises(GraphFormatError, match="class_type"):
            Graph.from_wire({"1": {"inputs": {}}})

    def test_rejects_non_dict_node(self):
        with pytest.raises(GraphFormatError):
            Graph.from_wire({"1": "KSampler"})

    def test_rejects_placeholder_node_id(self):
        with pytest.raises(GraphFormatError, match="#id"):
            Graph.from_wire({"#id": {"class_type": "KSampler", "inputs": {}}})

    def test_rejects_placeholder_edge(self):
        with pytest.raises(GraphFormatError, match="#id"):
            Graph.from_wire({"1": {"class_type": "VAEDecode", "inputs": {"samples": ["#id", 0]}}})

    def test_format_error_is_value_error(self):
        with pytest.raises(ValueError):
            Graph.from_wire({"1": {"class_type": "KSampler", "inputs": "bad"}})


class TestToWire:
    """Test serializing back to the /prompt format."""

    def test_round_trip_preserves_workflow(self, api_workflow):
        assert Graph.from_wire(api_workflow).to_wire() == api_workflow

    def test_output_is_json_serializable(self, template_graph):
        wire = template_graph.to_wire()
        assert json.loads(json.dumps(wire))["s-42"]["inputs"]["model"] == ["ckpt-a1", 0]

    def test_to_wire_is_independent_of_graph(self, template_graph):
        wire = template_graph.to_wire()
        wire["s-42"]["inputs"]["steps"] = 99
        assert template_graph["s-42"].inputs["steps"] == 20


class TestGraphQueries:
    def test_by_role_and_first(self, template_graph):
        encoders = template_graph.by_role(NodeRole.TEXT_ENCODE)
        assert [node_id for node_id, _ in encoders] == ["907", "x3"]
        assert template_graph.first(NodeRole.SAMPLER)[0] == "s-42"
        assert template_graph.first(NodeRole.CLIP_ADJUST) is None

    def test_copy_is_deep(self, template_graph):
        clone = template_graph.copy()
        clone["x3"].inputs["text"] = "changed"
        assert template_graph["x3"].inputs["text"] == "a lighthouse at dusk"
        assert clone != template_graph


class TestNativeConversion:
    """Test conversion of ComfyUI UI exports."""

    def test_links_and_widgets(self):
        native = {
            "nodes": [
                {"id": 1, "type": "CheckpointLoaderSimple", "inputs": [], "widgets_values": ["model.ckpt"]},
                {
                    "id": 2,
                    "type": "CLIPTextEncode",
                    "inputs": [{"name": "clip", "link": 5}, {"name": "text"}],
                    "widgets_values": ["a cat"],
                },
                {"id": 3, "type": "Note", "inputs": [], "widgets_values": ["ignore me"]},
            ],
            "links": [[5, 1, 1, 2, 0, "CLIP"]],
        }

        converted = convert_native_workflow(native)

        assert converted["2"] == {"class_type": "CLIPTextEncode", "inputs": {"clip": ["1", 1], "text": "a cat"}}
        assert "3" not in converted

    def test_from_wire_accepts_native_format(self):
        with open(os.path.join(WORKFLOW_DIR, "realistic-portrait.json"), encoding="utf-8") as f:
            graph = Graph.from_wire(json.load(f))

        sampler_id, sampler = graph.first(NodeRole.SAMPLER)
        assert sampler_id == "3"
        assert sampler.inputs["positive"] == Edge("6", 0)
        assert sampler.inputs["negative"] == Edge("7", 0)
        # control-after-generate widget value is skipped
        assert sampler.inputs["seed"] == 987654321
        assert sampler.inputs["steps"] == 30
        assert sampler.inputs["scheduler"] == "karras"
        assert graph["4"].inputs == {"ckpt_name": "realismEngineSDXL_v30VAE.safetensors"}
        assert graph["6"].title == "Positive Prompt"
        assert "10" not in graph

    def test_native_placeholder_id_rejected(self):
        with pytest.raises(GraphFormatError, match="#id"):
            Graph.from_wire({"nodes": [{"id": "#id", "type": "KSampler"}], "links": []})

    def test_native_missing_type_rejected(self):
        with pytest.raises(GraphFormatError, match="type"):
            Graph.from_wire({"nodes": [{"id": 1}], "links": []})
