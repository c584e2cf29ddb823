"""
Typed node-graph model and the single conversion boundary to ComfyUI JSON.

ComfyUI's API format is a mapping of node id -> {"class_type", "inputs"},
where a linked input is encoded as a two element list [source_node_id, slot].
Inside the orchestrator those links are explicit Edge values and each node
carries a role derived from its class type, so malformed graphs are rejected
when they are loaded rather than when the backend executes them.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import GraphFormatError

logger = logging.getLogger(__name__)

INVALID_NODE_ID = "#id"


class NodeRole(Enum):
    LOADER = "loader"
    CLIP_ADJUST = "clip_adjust"
    TEXT_ENCODE = "text_encode"
    LATENT_SIZE = "latent_size"
    SAMPLER = "sampler"
    DECODE = "decode"
    SAVE = "save"
    OTHER = "other"


ROLE_CLASS_TYPES: Dict[NodeRole, Tuple[str, ...]] = {
    NodeRole.LOADER: ("CheckpointLoaderSimple", "CheckpointLoader", "UNETLoader"),
    NodeRole.CLIP_ADJUST: ("CLIPSetLastLayer",),
    NodeRole.TEXT_ENCODE: ("CLIPTextEncode",),
    NodeRole.LATENT_SIZE: ("EmptyLatentImage", "EmptySD3LatentImage"),
    NodeRole.SAMPLER: ("KSampler", "KSamplerAdvanced"),
    NodeRole.DECODE: ("VAEDecode", "VAEDecodeTiled"),
    NodeRole.SAVE: ("SaveImage", "PreviewImage"),
}

_CLASS_TYPE_ROLES: Dict[str, NodeRole] = {
    class_type: role
    for role, class_types in ROLE_CLASS_TYPES.items()
    for class_type in class_types
}

# Input that carries the model filename, per loader class
MODEL_INPUTS = {
    "CheckpointLoaderSimple": "ckpt_name",
    "CheckpointLoader": "ckpt_name",
    "UNETLoader": "unet_name",
}

# Input that carries the seed, per sampler class
SEED_INPUTS = {
    "KSampler": "seed",
    "KSamplerAdvanced": "noise_seed",
}

# Native-format utility nodes that never reach the /prompt API
SKIP_NODE_TYPES = {"Note", "MarkdownNote"}

CONTROL_AFTER_GENERATE = ("fixed", "increment", "decrement", "randomize")


def role_for(class_type: str) -> NodeRole:
    return _CLASS_TYPE_ROLES.get(class_type, NodeRole.OTHER)


@dataclass(frozen=True)
class Edge:
    """Reference to output `slot` of node `node_id`."""
    node_id: str
    slot: int = 0

    def to_wire(self) -> List[Any]:
        return [self.node_id, self.slot]


@dataclass
class Node:
    class_type: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def role(self) -> NodeRole:
        return role_for(self.class_type)

    @property
    def title(self) -> Optional[str]:
        return self.meta.get("title")

    def edge(self, name: str) -> Optional[Edge]:
        value = self.inputs.get(name)
        return value if isinstance(value, Edge) else None

    def edges(self) -> Dict[str, Edge]:
        return {k: v for k, v in self.inputs.items() if isinstance(v, Edge)}


@dataclass
class Graph:
    nodes: Dict[str, Node] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return str(node_id) in self.nodes

    def __getitem__(self, node_id: str) -> Node:
        return self.nodes[str(node_id)]

    def get(self, node_id: Any) -> Optional[Node]:
        return self.nodes.get(str(node_id))

    def items(self):
        return self.nodes.items()

    def by_role(self, role: NodeRole) -> List[Tuple[str, Node]]:
        return [(node_id, node) for node_id, node in self.nodes.items() if node.role == role]

    def first(self, role: NodeRole) -> Optional[Tuple[str, Node]]:
        for node_id, node in self.nodes.items():
            if node.role == role:
                return node_id, node
        return None

    def class_types(self) -> List[str]:
        return [node.class_type for node in self.nodes.values()]

    def copy(self) -> "Graph":
        return copy.deepcopy(self)

    @classmethod
    def from_wire(cls, data: Any) -> "Graph":
        """Build a Graph from API-format or native (UI export) ComfyUI JSON."""
        if not isinstance(data, dict):
            raise GraphFormatError(f"Workflow must be a JSON object, got {type(data).__name__}")
        if isinstance(data.get("nodes"), list):
            data = convert_native_workflow(data)

        nodes: Dict[str, Node] = {}
        for raw_id, node_data in data.items():
            node_id = str(raw_id)
            if node_id == INVALID_NODE_ID:
                raise GraphFormatError(f"Invalid node ID found: '{INVALID_NODE_ID}'. Node must have a valid ID.")
            if not isinstance(node_data, dict):
                raise GraphFormatError(f"Node {node_id} is not an object")
            class_type = node_data.get("class_type")
            if not class_type or not isinstance(class_type, str):
                raise GraphFormatError(f"Node {node_id} is missing 'class_type' property")
            raw_inputs = node_data.get("inputs") or {}
            if not isinstance(raw_inputs, dict):
                raise GraphFormatError(f"Node {node_id} has non-object 'inputs'")

            inputs = {}
            for name, value in raw_inputs.items():
                inputs[name] = _parse_value(node_id, name, value)
            meta = node_data.get("_meta") if isinstance(node_data.get("_meta"), dict) else {}
            nodes[node_id] = Node(class_type=class_type, inputs=inputs, meta=dict(meta))

        return cls(nodes)

    def to_wire(self) -> Dict[str, Dict[str, Any]]:
        """Serialize to the API format accepted by ComfyUI's /prompt endpoint."""
        wire: Dict[str, Dict[str, Any]] = {}
        for node_id, node in self.nodes.items():
            inputs = {
                name: value.to_wire() if isinstance(value, Edge) else copy.deepcopy(value)
                for name, value in node.inputs.items()
            }
            entry: Dict[str, Any] = {"class_type": node.class_type, "inputs": inputs}
            if node.meta:
                entry["_meta"] = dict(node.meta)
            wire[node_id] = entry
        return wire


def _parse_value(node_id: str, name: str, value: Any) -> Any:
    # ComfyUI treats any [node_id, slot] pair as a link
    if isinstance(value, (list, tuple)) and len(value) == 2 and isinstance(value[1], int) \
            and not isinstance(value[1], bool) and isinstance(value[0], (str, int)):
        source = str(value[0])
        if source == INVALID_NODE_ID:
            raise GraphFormatError(f"Node {node_id} has invalid node reference '{INVALID_NODE_ID}' in input '{name}'")
        return Edge(source, value[1])
    return value


def convert_native_workflow(workflow: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert ComfyUI native workflow format (nodes array + links) to the API format.
    Unlinked inputs are filled from widgets_values in declaration order.
    """
    nodes = workflow.get("nodes", [])
    links = workflow.get("links", [])

    # link_id -> (source_node_id, source_slot_index)
    link_map: Dict[Any, Tuple[str, int]] = {}
    for link in links:
        if not isinstance(link, list) or len(link) < 4:
            continue
        link_map[link[0]] = (str(link[1]), link[2])

    prompt: Dict[str, Dict[str, Any]] = {}
    for node in nodes:
        if not isinstance(node, dict):
            continue

        node_id = node.get("id")
        if node_id is None:
            continue
        node_id_str = str(node_id)
        if node_id_str == INVALID_NODE_ID:
            raise GraphFormatError(f"Invalid node ID found: '{INVALID_NODE_ID}'. Node must have a valid numeric ID.")
        class_type = node.get("type")
        if not class_type:
            raise GraphFormatError(f"Node {node_id_str} is missing 'type' property (class_type)")

        if class_type in SKIP_NODE_TYPES:
            logger.debug(f"Skipping utility node '{class_type}' with id {node_id_str}")
            continue

        node_inputs: Dict[str, Any] = {}
        widgets_values = node.get("widgets_values", [])
        if not isinstance(widgets_values, list):
            widgets_values = []
        widget_index = 0
        input_entries = [e for e in node.get("inputs", []) if isinstance(e, dict)]
        # Newer exports tag widget-backed inputs; untagged ones are then pure sockets
        tagged_widgets = any("widget" in e for e in input_entries)

        for input_entry in input_entries:
            input_name = input_entry.get("name")
            if not input_name:
                continue

            link_id = input_entry.get("link")
            if link_id is not None and link_id in link_map:
                node_inputs[input_name] = list(link_map[link_id])
                if "widget" in input_entry:
                    widget_index += 1
                continue
            if tagged_widgets and "widget" not in input_entry:
                continue

            if widget_index < len(widgets_values):
                node_inputs[input_name] = widgets_values[widget_index]
                widget_index += 1
                # Seed widgets are followed by a UI-only "control after generate" value
                if input_name in SEED_INPUTS.values() and widget_index < len(widgets_values) \
                        and widgets_values[widget_index] in CONTROL_AFTER_GENERATE:
                    widget_index += 1
            else:
                node_inputs[input_name] = input_entry.get("value")

        prompt[node_id_str] = {"class_type": class_type, "inputs": node_inputs}
        if "_meta" in node:
            prompt[node_id_str]["_meta"] = node["_meta"]
        elif node.get("title"):
            prompt[node_id_str]["_meta"] = {"title": node["title"]}

    return prompt
