"""
Construcción de workflows

Traduce unos ``GenerationParameters`` validados en un ``WorkflowGraph``:
- Texto a imagen: modelo + LoRA de estilo, codificación del prompt, guía,
  latente vacío, sampler, decodificador y nodo de guardado
- Imagen a imagen: además carga la imagen de referencia y la combina con el
  prompt mediante Redux; la rama de máscara sólo se añade si hay máscara

Las funciones son puras salvo la semilla aleatoria, que se genera en cada
construcción cuando no se indica una.
"""

import logging
from dataclasses import dataclass

from comfyflow.config import (
    CLIP_MODEL_1,
    CLIP_MODEL_2,
    CLIP_VISION_MODEL,
    DEFAULT_STYLE_MODEL,
    REDUX_MODEL,
    STYLE_MODELS,
    UNET_MODEL,
    UNET_WEIGHT_DTYPE,
    VAE_MODEL,
)
from comfyflow.errors import ValidationError
from comfyflow.schemas import GenerationMode, GenerationParameters
from comfyflow.utils import define_seed
from comfyflow.workflows.graph import WorkflowGraph
from comfyflow.workflows.nodes import (
    ClipLoader,
    ClipVisionLoader,
    Decode,
    Guidance,
    ImageLoad,
    LatentInit,
    MaskLoad,
    ModelLoader,
    NodeRef,
    ReferenceConditioning,
    Sampler,
    Save,
    StyleAdapter,
    StyleModelLoader,
    TextEncode,
    VaeLoader,
)

logger = logging.getLogger(__name__)

TEXT_TO_IMAGE_PREFIX = "ComfyUI_Text2Image"
IMAGE_TO_IMAGE_PREFIX = "ComfyUI_Image2Image"


@dataclass(frozen=True)
class _ModelStack:
    model: NodeRef
    vae: NodeRef
    positive: NodeRef
    negative: NodeRef


def resolve_style_model(style_model_id: str, strength: float) -> tuple[str, float]:
    """
    Map a style id to the LoRA filename and strength to load.

    Without a style the default LoRA is still wired in, at strength 0, so both
    graph shapes keep the same topology. Raw ``.safetensors`` names listed by
    the backend are accepted as-is.
    """
    if not style_model_id:
        return DEFAULT_STYLE_MODEL, 0.0
    if style_model_id in STYLE_MODELS:
        return STYLE_MODELS[style_model_id], strength
    if style_model_id.endswith(".safetensors"):
        return style_model_id, strength
    raise ValidationError(f"Unknown style model: {style_model_id}")


def _add_model_stack(graph: WorkflowGraph, params: GenerationParameters) -> _ModelStack:
    unet = graph.add(ModelLoader(unet_name=UNET_MODEL, weight_dtype=UNET_WEIGHT_DTYPE))
    clip = graph.add(ClipLoader(clip_name1=CLIP_MODEL_1, clip_name2=CLIP_MODEL_2))
    vae = graph.add(VaeLoader(vae_name=VAE_MODEL))

    lora_name, strength = resolve_style_model(params.style_model_id, params.style_strength)
    style = graph.add(
        StyleAdapter(
            model=NodeRef(unet),
            clip=NodeRef(clip),
            lora_name=lora_name,
            strength_model=strength,
        )
    )
    positive = graph.add(TextEncode(clip=NodeRef(style, 1), text=params.prompt))
    negative = graph.add(TextEncode(clip=NodeRef(style, 1), text=params.negative_prompt or ""))
    return _ModelStack(
        model=NodeRef(style, 0),
        vae=NodeRef(vae),
        positive=NodeRef(positive),
        negative=NodeRef(negative),
    )


def _add_sampling(
    graph: WorkflowGraph,
    params: GenerationParameters,
    stack: _ModelStack,
    conditioning: NodeRef,
    filename_prefix: str,
):
    guided = graph.add(Guidance(conditioning=conditioning, guidance=params.guidance))
    latent = graph.add(
        LatentInit(width=params.width, height=params.height, batch_size=params.batch_size)
    )
    sampler = graph.add(
        Sampler(
            model=stack.model,
            positive=NodeRef(guided),
            negative=stack.negative,
            latent_image=NodeRef(latent),
            seed=define_seed(params.seed),
            steps=params.step_count,
            cfg=params.guidance_scale,
        )
    )
    decoded = graph.add(Decode(samples=NodeRef(sampler), vae=stack.vae))
    graph.add(Save(images=NodeRef(decoded), filename_prefix=filename_prefix))


def _warn_on_dimensions(params: GenerationParameters):
    if params.width % 8 or params.height % 8:
        logger.warning(
            "Size %sx%s is not a multiple of 8; the backend will crop the latent",
            params.width,
            params.height,
        )


def build_text_to_image(params: GenerationParameters) -> WorkflowGraph:
    _warn_on_dimensions(params)
    graph = WorkflowGraph()
    stack = _add_model_stack(graph, params)
    _add_sampling(graph, params, stack, stack.positive, TEXT_TO_IMAGE_PREFIX)
    return graph


def build_image_to_image(params: GenerationParameters) -> WorkflowGraph:
    if not params.reference_image_asset_ref:
        raise ValidationError("Image to image generation requires a reference image")
    _warn_on_dimensions(params)

    graph = WorkflowGraph()
    stack = _add_model_stack(graph, params)

    style_model = graph.add(StyleModelLoader(style_model_name=REDUX_MODEL))
    clip_vision = graph.add(ClipVisionLoader(clip_name=CLIP_VISION_MODEL))
    reference = graph.add(ImageLoad(image=params.reference_image_asset_ref))

    mask = None
    if params.mask_asset_ref:
        mask = NodeRef(graph.add(MaskLoad(image=params.mask_asset_ref)))

    conditioning = graph.add(
        ReferenceConditioning(
            conditioning=stack.positive,
            style_model=NodeRef(style_model),
            clip_vision=NodeRef(clip_vision),
            image=NodeRef(reference),
            strength=params.redux_strength,
            downsampling_factor=params.downsampling_factor,
            mask=mask,
        )
    )
    _add_sampling(graph, params, stack, NodeRef(conditioning), IMAGE_TO_IMAGE_PREFIX)
    return graph


def build_workflow(params: GenerationParameters) -> WorkflowGraph:
    if params.mode == GenerationMode.IMAGE_TO_IMAGE:
        return build_image_to_image(params)
    return build_text_to_image(params)
