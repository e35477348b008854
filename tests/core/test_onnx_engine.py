"""
Tests for OnnxEngine.

Most tests run against a small generated model that sums the masked token IDs
over the sequence axis. The integration test needs a real sentence-embedding
ONNX model exposing ``input_ids``/``attention_mask`` and
``token_embeddings``/``sentence_embedding``; point EMBED_TEST_MODEL_PATH at it
(and set EMBED_TEST_EMBED_DIM if it is not 768).
"""

import os

import onnx
import pytest
import torch
from onnx import TensorProto, helper

from embed_lite.batch.tensor_builder import (
    INPUT_NAMES,
    OUTPUT_NAMES,
    TOKEN_EMBEDDINGS,
    TensorBuilder,
)
from embed_lite.config import EmbeddingConfig
from embed_lite.core.embedding_service import EmbeddingService
from embed_lite.core.onnx_engine import OnnxEngine
from embed_lite.core.session import InferenceSession
from embed_lite.errors import ConfigurationError
from embed_lite.memory.tensor_allocator import TensorAllocator

TEST_MODEL_PATH = os.environ.get("EMBED_TEST_MODEL_PATH")

SUM_SEQ_LEN = 4
SUM_EMBED_DIM = 3


def write_sum_model(path, embed_dim=SUM_EMBED_DIM, output_names=OUTPUT_NAMES):
    """Write a model where every token embedding is ``id * mask`` repeated
    ``embed_dim`` times and the sentence embedding is their sum over the sequence.
    """
    token_name, sentence_name = output_names
    nodes = [
        helper.make_node("Mul", ["input_ids", "attention_mask"], ["masked"]),
        helper.make_node("Cast", ["masked"], ["masked_float"], to=TensorProto.FLOAT),
        helper.make_node("Unsqueeze", ["masked_float", "last_axis"], ["column"]),
        helper.make_node("Mul", ["column", "ones"], [token_name]),
        helper.make_node("ReduceSum", [token_name, "seq_axis"], [sentence_name], keepdims=0),
    ]
    initializers = [
        helper.make_tensor("last_axis", TensorProto.INT64, [1], [2]),
        helper.make_tensor("seq_axis", TensorProto.INT64, [1], [1]),
        helper.make_tensor("ones", TensorProto.FLOAT, [embed_dim], [1.0] * embed_dim),
    ]
    inputs = [
        helper.make_tensor_value_info(name, TensorProto.INT64, ["batch", "seq"])
        for name in INPUT_NAMES
    ]
    outputs = [
        helper.make_tensor_value_info(token_name, TensorProto.FLOAT, ["batch", "seq", embed_dim]),
        helper.make_tensor_value_info(sentence_name, TensorProto.FLOAT, ["batch", embed_dim]),
    ]
    graph = helper.make_graph(nodes, "sum_embedding", inputs, outputs, initializers)
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def sum_model(tmp_path):
    return write_sum_model(tmp_path / "sum.onnx")


@pytest.mark.unit
def test_engine_declares_thread_safety():
    assert OnnxEngine.thread_safe is True


@pytest.mark.unit
def test_default_providers():
    assert OnnxEngine().providers == ["CPUExecutionProvider"]


@pytest.mark.unit
def test_open_missing_model(tmp_path):
    """Test a missing model file is a configuration error."""
    engine = OnnxEngine()

    with pytest.raises(ConfigurationError, match="model file not found"):
        engine.open(str(tmp_path / "missing.onnx"), INPUT_NAMES, OUTPUT_NAMES)


@pytest.mark.unit
def test_open_empty_model_path():
    with pytest.raises(ConfigurationError, match="model path is empty"):
        OnnxEngine().open("", INPUT_NAMES, OUTPUT_NAMES)


@pytest.mark.unit
def test_open_model_missing_declared_tensor(tmp_path):
    """Test a model without the expected output names is rejected."""
    path = write_sum_model(tmp_path / "pooled.onnx", output_names=(TOKEN_EMBEDDINGS, "pooled"))

    with pytest.raises(ConfigurationError, match="does not declare tensors"):
        OnnxEngine().open(path, INPUT_NAMES, OUTPUT_NAMES)


@pytest.mark.unit
def test_service_open_missing_model(tmp_path):
    """Test the default engine rejects a missing model when the service opens."""
    config = EmbeddingConfig(model_path=str(tmp_path / "missing.onnx"))
    service = EmbeddingService(config)

    assert isinstance(service.engine, OnnxEngine)
    with pytest.raises(ConfigurationError):
        service.open()


@pytest.mark.unit
def test_run_writes_bound_outputs(sum_model):
    """Test the engine writes both outputs into the pre-allocated buffers."""
    allocator = TensorAllocator()
    builder = TensorBuilder(SUM_SEQ_LEN, SUM_EMBED_DIM, allocator)

    with InferenceSession.open(OnnxEngine(), sum_model, INPUT_NAMES, OUTPUT_NAMES) as session:
        with builder.build_batch([[1, 2, 3], [4]]) as io_set:
            session.run(io_set)
            tokens = io_set.output(TOKEN_EMBEDDINGS).tensor.clone()

    assert torch.equal(tokens[0, :, 0], torch.tensor([1.0, 2.0, 3.0, 0.0]))
    assert torch.equal(tokens[1, :, 2], torch.tensor([4.0, 0.0, 0.0, 0.0]))
    assert allocator.get_stats()["live"] == 0


@pytest.mark.unit
def test_sum_model_sequential_and_concurrent(sum_model):
    """Test both batch paths give the known sums through onnxruntime."""
    config = EmbeddingConfig(model_path=sum_model, seq_len=SUM_SEQ_LEN, embed_dim=SUM_EMBED_DIM)
    allocator = TensorAllocator()

    with EmbeddingService(config, engine=OnnxEngine(), allocator=allocator) as service:
        chunks = service.chunk_text(torch.arange(1, 11))  # [1..4], [5..8], [9, 10]
        sequential = service.generate_batch(chunks)
        concurrent = service.generate_batch_concurrently(chunks, sub_batch_size=2)

    expected = torch.tensor([[10.0] * 3, [26.0] * 3, [19.0] * 3])
    assert torch.equal(torch.stack(sequential), expected)
    assert torch.equal(torch.stack(concurrent), expected)
    assert allocator.get_stats()["live"] == 0


@pytest.mark.integration
@pytest.mark.skipif(TEST_MODEL_PATH is None, reason="EMBED_TEST_MODEL_PATH not set")
def test_onnx_sequential_and_concurrent_agree():
    """Test the real engine gives the same vectors on both batch paths."""
    embed_dim = int(os.environ.get("EMBED_TEST_EMBED_DIM", "768"))
    config = EmbeddingConfig(model_path=TEST_MODEL_PATH, seq_len=32, embed_dim=embed_dim)
    allocator = TensorAllocator()

    with EmbeddingService(config, allocator=allocator) as service:
        chunks = service.chunk_text(torch.arange(100, 200))
        sequential = service.generate_batch(chunks)
        concurrent = service.generate_batch_concurrently(chunks, sub_batch_size=2)

    assert len(sequential) == len(concurrent) == 4
    for left, right in zip(sequential, concurrent):
        assert left.shape == (embed_dim,)
        assert torch.allclose(left, right, atol=1e-4, rtol=1e-4)
    assert allocator.get_stats()["live"] == 0
