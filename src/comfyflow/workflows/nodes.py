"""
Nodos tipados del workflow

Cada clase corresponde a un ``class_type`` de ComfyUI. Los nombres de los
campos son exactamente los nombres de las entradas del nodo, de modo que la
serialización es directa. Las conexiones entre nodos se expresan con
``NodeRef`` (nodo de origen, slot de salida).
"""

from dataclasses import dataclass, fields
from typing import ClassVar, Iterator, Union


@dataclass(frozen=True)
class NodeRef:
    node_id: str
    slot: int = 0

    def to_json(self) -> list:
        return [self.node_id, self.slot]


@dataclass(frozen=True)
class Node:
    class_type: ClassVar[str]
    outputs: ClassVar[tuple[str, ...]] = ()

    def references(self) -> Iterator[tuple[str, NodeRef]]:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, NodeRef):
                yield f.name, value

    def inputs(self) -> dict:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            result[f.name] = value.to_json() if isinstance(value, NodeRef) else value
        return result


@dataclass(frozen=True)
class ModelLoader(Node):
    class_type: ClassVar[str] = "UNETLoader"
    outputs: ClassVar[tuple[str, ...]] = ("MODEL",)

    unet_name: str
    weight_dtype: str = "fp8_e4m3fn"


@dataclass(frozen=True)
class ClipLoader(Node):
    class_type: ClassVar[str] = "DualCLIPLoader"
    outputs: ClassVar[tuple[str, ...]] = ("CLIP",)

    clip_name1: str
    clip_name2: str
    type: str = "flux"


@dataclass(frozen=True)
class VaeLoader(Node):
    class_type: ClassVar[str] = "VAELoader"
    outputs: ClassVar[tuple[str, ...]] = ("VAE",)

    vae_name: str


@dataclass(frozen=True)
class StyleAdapter(Node):
    """LoRA applied to both the diffusion model and the text encoder."""

    class_type: ClassVar[str] = "LoraLoader"
    outputs: ClassVar[tuple[str, ...]] = ("MODEL", "CLIP")

    model: NodeRef
    clip: NodeRef
    lora_name: str
    strength_model: float
    strength_clip: float = 1.0


@dataclass(frozen=True)
class TextEncode(Node):
    class_type: ClassVar[str] = "CLIPTextEncode"
    outputs: ClassVar[tuple[str, ...]] = ("CONDITIONING",)

    clip: NodeRef
    text: str


@dataclass(frozen=True)
class Guidance(Node):
    class_type: ClassVar[str] = "FluxGuidance"
    outputs: ClassVar[tuple[str, ...]] = ("CONDITIONING",)

    conditioning: NodeRef
    guidance: float


@dataclass(frozen=True)
class LatentInit(Node):
    class_type: ClassVar[str] = "EmptySD3LatentImage"
    outputs: ClassVar[tuple[str, ...]] = ("LATENT",)

    width: int
    height: int
    batch_size: int = 1


@dataclass(frozen=True)
class Sampler(Node):
    class_type: ClassVar[str] = "KSampler"
    outputs: ClassVar[tuple[str, ...]] = ("LATENT",)

    model: NodeRef
    positive: NodeRef
    negative: NodeRef
    latent_image: NodeRef
    seed: int
    steps: int
    cfg: float
    sampler_name: str = "euler"
    scheduler: str = "beta"
    denoise: float = 1.0


@dataclass(frozen=True)
class Decode(Node):
    class_type: ClassVar[str] = "VAEDecode"
    outputs: ClassVar[tuple[str, ...]] = ("IMAGE",)

    samples: NodeRef
    vae: NodeRef


@dataclass(frozen=True)
class Save(Node):
    class_type: ClassVar[str] = "SaveImage"

    images: NodeRef
    filename_prefix: str = "ComfyUI"


@dataclass(frozen=True)
class ImageLoad(Node):
    class_type: ClassVar[str] = "LoadImage"
    outputs: ClassVar[tuple[str, ...]] = ("IMAGE", "MASK")

    image: str


@dataclass(frozen=True)
class MaskLoad(Node):
    class_type: ClassVar[str] = "LoadImageMask"
    outputs: ClassVar[tuple[str, ...]] = ("MASK",)

    image: str
    channel: str = "red"


@dataclass(frozen=True)
class StyleModelLoader(Node):
    class_type: ClassVar[str] = "StyleModelLoader"
    outputs: ClassVar[tuple[str, ...]] = ("STYLE_MODEL",)

    style_model_name: str


@dataclass(frozen=True)
class ClipVisionLoader(Node):
    class_type: ClassVar[str] = "CLIPVisionLoader"
    outputs: ClassVar[tuple[str, ...]] = ("CLIP_VISION",)

    clip_name: str


@dataclass(frozen=True)
class ReferenceConditioning(Node):
    """Blends the text conditioning with features of the reference image (Redux)."""

    class_type: ClassVar[str] = "ReduxAdvanced"
    outputs: ClassVar[tuple[str, ...]] = ("CONDITIONING", "IMAGE", "MASK")

    conditioning: NodeRef
    style_model: NodeRef
    clip_vision: NodeRef
    image: NodeRef
    strength: float
    downsampling_factor: int
    weight: float = 1.0
    downsampling_function: str = "area"
    mode: str = "center crop (square)"
    start_percent: float = 0.1
    mask: NodeRef | None = None


AnyNode = Union[
    ModelLoader,
    ClipLoader,
    VaeLoader,
    StyleAdapter,
    TextEncode,
    Guidance,
    LatentInit,
    Sampler,
    Decode,
    Save,
    ImageLoad,
    MaskLoad,
    StyleModelLoader,
    ClipVisionLoader,
    ReferenceConditioning,
]
