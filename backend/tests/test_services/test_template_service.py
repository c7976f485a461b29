"""
Unit tests for template generation, storage encoding and similarity
"""
import numpy as np
import pytest

from app.services.template_service import (
    TEMPLATE_DIM,
    HashTemplateGenerator,
    TemplateGenerator,
    batch_cosine_similarity,
    cosine_similarity,
    decode_template,
    encode_template,
    get_template_generator,
)


class TestHashTemplateGenerator:
    """Tests for the deterministic placeholder generator."""

    def test_version_and_dimension(self):
        generator = HashTemplateGenerator()

        vector = generator.generate([b"face"])

        assert generator.version == "face-emb-v0-stub"
        assert vector.shape == (TEMPLATE_DIM,)
        assert vector.dtype == np.float32

    def test_values_in_unit_range(self):
        vector = HashTemplateGenerator().generate([b"face"])

        assert vector.min() >= -1.0
        assert vector.max() <= 1.0

    def test_deterministic(self):
        generator = HashTemplateGenerator()

        assert np.array_equal(generator.generate([b"a", b"b"]), generator.generate([b"a", b"b"]))

    def test_different_inputs_differ(self):
        generator = HashTemplateGenerator()

        assert not np.array_equal(generator.generate([b"a"]), generator.generate([b"b"]))

    @pytest.mark.parametrize("images", [[], [b""], [b"", b""]])
    def test_no_usable_images_returns_none(self, images):
        assert HashTemplateGenerator().generate(images) is None

    def test_is_a_template_generator(self):
        assert isinstance(HashTemplateGenerator(), TemplateGenerator)


class TestEncoding:

    def test_encode_decode(self):
        vector = HashTemplateGenerator().generate([b"face"])

        data = encode_template(vector)

        assert len(data) == TEMPLATE_DIM * 4
        assert np.allclose(decode_template(data), vector)

    @pytest.mark.parametrize("data", [b"", b"\x00\x01\x02"])
    def test_decode_rejects_malformed(self, data):
        with pytest.raises(ValueError):
            decode_template(data)


class TestSimilarity:

    def test_identical_vectors(self):
        v = np.array([0.5, -0.25, 1.0], dtype=np.float32)

        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_zero_norm(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity(np.ones(3), np.ones(4))

    def test_batch(self):
        query = np.array([1.0, 0.0], dtype=np.float32)
        candidates = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0], [-1.0, 0.0]], dtype=np.float32)

        scores = batch_cosine_similarity(query, candidates)

        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0, -1.0])

    def test_batch_empty(self):
        assert batch_cosine_similarity(np.ones(2), np.zeros((0, 2))).size == 0

    def test_batch_dimension_mismatch(self):
        with pytest.raises(ValueError):
            batch_cosine_similarity(np.ones(2), np.ones((2, 3)))


class TestTemplateGeneratorSingleton:

    def test_singleton(self, monkeypatch):
        import app.services.template_service as module
        monkeypatch.setattr(module, "_template_generator", None)

        first = get_template_generator()

        assert first is get_template_generator()
        assert isinstance(first, HashTemplateGenerator)
