import pytest

from comfyflow.config import DEFAULT_STYLE_MODEL, STYLE_MODELS
from comfyflow.errors import GenerationError, ValidationError
from comfyflow.schemas import GenerationMode, GenerationParameters
from comfyflow.workflows import (
    GraphError,
    NodeRef,
    WorkflowGraph,
    build_image_to_image,
    build_text_to_image,
    build_workflow,
)
from comfyflow.workflows.nodes import (
    Decode,
    ImageLoad,
    LatentInit,
    MaskLoad,
    ModelLoader,
    ReferenceConditioning,
    Sampler,
    Save,
    StyleAdapter,
    TextEncode,
    VaeLoader,
)


def _params(**overrides) -> GenerationParameters:
    fields = {"prompt": "a red cube", "width": 512, "height": 512}
    fields.update(overrides)
    return GenerationParameters.create(**fields)


def _image_params(**overrides) -> GenerationParameters:
    fields = {
        "mode": GenerationMode.IMAGE_TO_IMAGE,
        "reference_image_asset_ref": "input_image_1.png",
    }
    fields.update(overrides)
    return _params(**fields)


def _only(graph, node_type):
    nodes = graph.nodes_of(node_type)
    assert len(nodes) == 1
    return nodes[0]


def test_text_to_image_graph_shape():
    graph = build_text_to_image(_params(batch_size=2))
    assert len(graph.nodes_of(Save)) == 1
    assert graph.nodes_of(MaskLoad) == []
    assert graph.nodes_of(ImageLoad) == []
    assert graph.nodes_of(ReferenceConditioning) == []

    _, latent = _only(graph, LatentInit)
    assert latent.batch_size == 2
    assert (latent.width, latent.height) == (512, 512)


def test_text_to_image_wiring():
    graph = build_text_to_image(_params(step_count=30, guidance_scale=2.5, seed=7))
    sampler_id, sampler = _only(graph, Sampler)
    assert (sampler.steps, sampler.cfg, sampler.seed) == (30, 2.5, 7)
    assert graph.seed == 7

    save_id, save = _only(graph, Save)
    assert graph.terminal_id == save_id
    decode = graph[save.images.node_id]
    assert isinstance(decode, Decode)
    assert decode.samples == NodeRef(sampler_id, 0)

    encoders = [node for _, node in graph.nodes_of(TextEncode)]
    assert [e.text for e in encoders] == ["a red cube", ""]


def test_prompt_serialization():
    prompt = build_text_to_image(_params(seed=1)).to_prompt()
    latent = next(n for n in prompt.values() if n["class_type"] == "EmptySD3LatentImage")
    assert latent["inputs"] == {"width": 512, "height": 512, "batch_size": 1}

    sampler = next(n for n in prompt.values() if n["class_type"] == "KSampler")
    node_id, slot = sampler["inputs"]["latent_image"]
    assert prompt[node_id]["class_type"] == "EmptySD3LatentImage"
    assert slot == 0

    for node in prompt.values():
        for value in node["inputs"].values():
            if isinstance(value, list):
                assert value[0] in prompt


def test_random_seed_generated_per_build():
    params = _params()
    seeds = {build_text_to_image(params).seed for _ in range(5)}
    assert all(0 <= s <= 2**32 - 1 for s in seeds)
    assert len(seeds) > 1


def test_style_adapter_parameters():
    style_id = next(iter(STYLE_MODELS))
    graph = build_text_to_image(_params(style_model_id=style_id, style_strength=1.4))
    _, style = _only(graph, StyleAdapter)
    assert style.lora_name == STYLE_MODELS[style_id]
    assert style.strength_model == 1.4


def test_no_style_loads_default_at_zero_strength():
    _, style = _only(build_text_to_image(_params()), StyleAdapter)
    assert style.lora_name == DEFAULT_STYLE_MODEL
    assert style.strength_model == 0.0


def test_backend_lora_filename_accepted():
    _, style = _only(build_text_to_image(_params(style_model_id="my_lora.safetensors")), StyleAdapter)
    assert style.lora_name == "my_lora.safetensors"


def test_unknown_style_rejected():
    with pytest.raises(ValidationError):
        build_text_to_image(_params(style_model_id="does-not-exist"))


def test_image_to_image_without_mask():
    graph = build_image_to_image(_image_params(redux_strength=0.6, downsampling_factor=3))
    assert graph.nodes_of(MaskLoad) == []
    assert len(graph.nodes_of(Save)) == 1

    _, reference = _only(graph, ReferenceConditioning)
    assert reference.mask is None
    assert "mask" not in reference.inputs()
    assert reference.strength == 0.6
    assert reference.downsampling_factor == 3

    _, image = _only(graph, ImageLoad)
    assert image.image == "input_image_1.png"
    assert isinstance(graph[reference.image.node_id], ImageLoad)


def test_image_to_image_mask_adds_exactly_one_node_and_edge():
    without = build_image_to_image(_image_params(seed=3))
    with_mask = build_image_to_image(_image_params(seed=3, mask_asset_ref="mask.png"))

    assert len(with_mask) == len(without) + 1
    mask_id, mask = _only(with_mask, MaskLoad)
    assert mask.image == "mask.png"

    _, reference = _only(with_mask, ReferenceConditioning)
    assert reference.mask == NodeRef(mask_id, 0)
    assert reference.inputs()["mask"] == [mask_id, 0]


def test_image_to_image_requires_reference():
    with pytest.raises(ValidationError):
        build_image_to_image(_params(mode=GenerationMode.IMAGE_TO_IMAGE))


def test_build_workflow_dispatches_on_mode():
    assert build_workflow(_params()).nodes_of(ReferenceConditioning) == []
    assert len(build_workflow(_image_params()).nodes_of(ReferenceConditioning)) == 1
    with pytest.raises(ValidationError):
        build_workflow(_params(mode=GenerationMode.IMAGE_TO_IMAGE))


def test_graph_rejects_unknown_node_reference():
    graph = WorkflowGraph()
    with pytest.raises(GraphError):
        graph.add(Decode(samples=NodeRef("42"), vae=NodeRef("43")))


def test_graph_rejects_unknown_slot():
    graph = WorkflowGraph()
    vae = graph.add(VaeLoader(vae_name="ae.safetensors"))
    with pytest.raises(GraphError):
        graph.add(Decode(samples=NodeRef(vae, 0), vae=NodeRef(vae, 1)))


def test_graph_requires_exactly_one_save_node():
    graph = WorkflowGraph()
    graph.add(ModelLoader(unet_name="flux1-dev.safetensors"))
    with pytest.raises(GraphError):
        graph.terminal_id

    full = build_text_to_image(_params())
    _, save = _only(full, Save)
    full.add(Save(images=save.images))
    with pytest.raises(GraphError):
        full.validate()


def test_frozen_graph_is_immutable():
    graph = build_text_to_image(_params())
    graph.freeze()
    assert graph.frozen
    with pytest.raises(GraphError):
        graph.add(VaeLoader(vae_name="ae.safetensors"))


def test_parameter_validation():
    with pytest.raises(ValidationError, match="prompt"):
        GenerationParameters.create(prompt="   ")
    with pytest.raises(ValidationError):
        _params(step_count=0)
    with pytest.raises(ValidationError):
        _params(step_count=151)
    with pytest.raises(ValidationError):
        _params(style_strength=2.5)
    with pytest.raises(ValidationError):
        _params(seed=2**32)
    with pytest.raises(ValidationError):
        _params(width=0)


def test_invalid_parameters_raise_domain_error():
    with pytest.raises(GenerationError) as excinfo:
        GenerationParameters.create(prompt="x", batch_size=0)
    assert isinstance(excinfo.value, ValidationError)
    assert "batch_size" in str(excinfo.value)
