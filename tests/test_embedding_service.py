"""
Tests for the hashing embedder, tokenizer and cosine similarity.
"""
import numpy as np
import pytest

from memstore.embedding_service import (
    EmbeddingService,
    cosine_similarity,
    embed,
    fnv1a_hash,
    tokenize,
)


@pytest.fixture
def embedding_service():
    """Create an embedding service with the default dimension."""
    return EmbeddingService()


class TestFnv1aHash:
    """Known FNV-1a 64-bit test vectors."""

    def test_empty_string_is_offset_basis(self):
        assert fnv1a_hash("") == 0xcbf29ce484222325

    def test_single_byte(self):
        assert fnv1a_hash("a") == 0xaf63dc4c8601ec8c

    def test_word(self):
        assert fnv1a_hash("foobar") == 0x85944171f73967e8

    def test_fits_in_64_bits(self):
        value = fnv1a_hash("the quick brown fox jumps over the lazy dog" * 10)
        assert 0 <= value < 2 ** 64

    def test_hashes_utf8_bytes(self):
        # "é" is hashed as its two UTF-8 bytes c3 a9
        expected = 0xcbf29ce484222325
        for byte in (0xc3, 0xa9):
            expected = ((expected ^ byte) * 0x100000001b3) % 2 ** 64
        assert fnv1a_hash("é") == expected


class TestTokenize:
    """Test cases for tokenize()."""

    def test_splits_on_punctuation_and_whitespace(self):
        assert tokenize("Hello, World! 42") == ["hello", "world", "42"]

    def test_underscore_is_a_separator(self):
        assert tokenize("snake_case") == ["snake", "case"]

    def test_symbol_only_input(self):
        assert tokenize("!!! --- ???") == []
        assert tokenize("   \n\t ") == []
        assert tokenize("") == []

    def test_only_ascii_letters_are_folded(self):
        assert tokenize("ÉCOLE café") == ["École", "café"]

    def test_non_latin_scripts_are_tokens(self):
        assert tokenize("日本語 テキスト") == ["日本語", "テキスト"]

    def test_combining_vowel_signs_stay_in_token(self):
        # the vowel signs are Alphabetic marks; the virama is not
        assert tokenize("हिन्दी") == ["हिन", "दी"]

    def test_arabic_diacritics_stay_in_token(self):
        assert tokenize("مَرْحَبًا بك") == ["مَرْحَبًا", "بك"]

    def test_other_numerals_are_tokens(self):
        assert tokenize("٤٢ Ⅻ ½") == ["٤٢", "Ⅻ", "½"]

    def test_preserves_order_and_duplicates(self):
        assert tokenize("b a b") == ["b", "a", "b"]


class TestEmbed:
    """Test cases for embed()."""

    def test_dimension(self):
        assert embed("hello world").shape == (256,)
        assert embed("").shape == (256,)

    def test_dtype_is_float32(self):
        assert embed("hello").dtype == np.float32

    def test_unit_norm(self):
        for text in ["hello world", "a a a b", "Machine learning with Python"]:
            assert abs(float(np.linalg.norm(embed(text))) - 1.0) < 1e-6

    def test_empty_tokens_give_zero_vector(self):
        assert not embed("").any()
        assert not embed("?!").any()

    def test_single_token_bucket(self):
        vec = embed("a")
        # 0xaf63dc4c8601ec8c % 256 == 0x8c
        assert vec[140] == 1.0
        assert float(vec.sum()) == 1.0

    def test_deterministic(self):
        text = "Reproducible embeddings, every time."
        assert np.array_equal(embed(text), embed(text))
        assert embed(text).tobytes() == embed(text).tobytes()

    def test_case_and_repetition(self):
        assert np.array_equal(embed("A"), embed("a"))
        assert np.array_equal(embed("a a"), embed("a"))


class TestCosineSimilarity:
    """Test cases for cosine_similarity()."""

    def test_self_similarity(self):
        vec = embed("alpha beta gamma")
        assert cosine_similarity(vec, vec) == pytest.approx(1.0)

    def test_zero_vector(self):
        vec = embed("alpha")
        assert cosine_similarity(vec, np.zeros(256, dtype=np.float32)) == 0.0
        assert cosine_similarity(np.zeros(3), np.zeros(3)) == 0.0

    def test_does_not_assume_normalized_input(self):
        assert cosine_similarity([2.0, 0.0], [5.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 1.0], [3.0, 0.0]) == pytest.approx(1 / np.sqrt(2))

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_uses_common_prefix(self):
        assert cosine_similarity([1.0, 0.0, 5.0], [1.0, 0.0]) == pytest.approx(1.0)

    def test_empty_vectors(self):
        assert cosine_similarity([], [1.0]) == 0.0

    def test_computed_in_float32(self):
        expected = np.float32(3.0) / (np.sqrt(np.float32(2.0)) * np.float32(3.0))
        assert cosine_similarity([1.0, 1.0], [3.0, 0.0]) == float(expected)


class TestEmbeddingService:
    """Test suite for EmbeddingService."""

    def test_initialization(self, embedding_service):
        assert embedding_service.embedding_dim == 256

    def test_embed_matches_function(self, embedding_service):
        assert np.array_equal(embedding_service.embed("hello"), embed("hello"))

    def test_embed_batch(self, embedding_service):
        texts = ["First sentence", "Second sentence", ""]
        embeddings = embedding_service.embed_batch(texts)

        assert len(embeddings) == 3
        assert all(len(e) == 256 for e in embeddings)
        assert not np.array_equal(embeddings[0], embeddings[1])
        assert not embeddings[2].any()

    def test_embed_batch_empty(self, embedding_service):
        assert embedding_service.embed_batch([]) == []

    def test_get_stats(self, embedding_service):
        stats = embedding_service.get_stats()
        assert stats["embedding_dimension"] == 256
        assert stats["scheme"] == "fnv1a-bow"
