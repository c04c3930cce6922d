from comfyflow.workflows.builder import (
    build_image_to_image,
    build_text_to_image,
    build_workflow,
)
from comfyflow.workflows.graph import GraphError, WorkflowGraph
from comfyflow.workflows.nodes import AnyNode, NodeRef

__all__ = [
    "GraphError",
    "NodeRef",
    "AnyNode",
    "WorkflowGraph",
    "build_image_to_image",
    "build_text_to_image",
    "build_workflow",
]
