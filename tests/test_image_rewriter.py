"""Unit tests for migration/image_rewriter.py"""

import pytest

from migration.image_rewriter import needs_rewrite, references_bitnami, rewrite


class TestNeedsRewrite:
    """Tests for needs_rewrite()"""

    @pytest.mark.parametrize(
        "image",
        [
            "bitnami/redis:7.2",
            "docker.io/bitnami/redis:7.0",
            "registry.example.com:5000/mirror/bitnami/postgresql:16",
            "Docker.io/BITNAMI/nginx:1.25",
            "bitnami/kubectl@sha256:abc123",
        ],
    )
    def test_bitnami_images_need_rewrite(self, image):
        """Images under a bitnami/ path segment need rewriting"""
        assert needs_rewrite(image) is True

    @pytest.mark.parametrize(
        "image",
        [
            "bitnamilegacy/redis:7.2",
            "docker.io/bitnamilegacy/redis:7.0",
            "docker.io/BitnamiLegacy/redis:7.0",
            "redis:7.2",
            "quay.io/bitnami-labs/sealed-secrets:0.24",
            "ghcr.io/mybitnami/redis:1",
            "mirror.io/bitnami/x/bitnamilegacy/redis:1",
        ],
    )
    def test_other_images_do_not_need_rewrite(self, image):
        """Legacy, unrelated and look-alike paths are left alone"""
        assert needs_rewrite(image) is False

    def test_empty_and_missing_images(self):
        """Absent images never need rewriting"""
        assert needs_rewrite("") is False
        assert needs_rewrite(None) is False


class TestRewrite:
    """Tests for rewrite()"""

    def test_rewrites_registry_prefixed_image(self):
        assert rewrite("docker.io/bitnami/redis:7.0") == "docker.io/bitnamilegacy/redis:7.0"

    def test_rewrites_bare_image(self):
        assert rewrite("bitnami/kubectl:1.28") == "bitnamilegacy/kubectl:1.28"

    def test_rewrite_is_case_insensitive(self):
        """The matched segment is replaced with the lowercase legacy path"""
        assert rewrite("Bitnami/nginx:1") == "bitnamilegacy/nginx:1"

    def test_only_first_occurrence_is_replaced(self):
        assert rewrite("bitnami/bitnami/tool:1") == "bitnamilegacy/bitnami/tool:1"

    def test_only_whole_segment_is_replaced(self):
        """A look-alike segment earlier in the path is not the one rewritten"""
        image = "myorg/not-bitnami/tools/bitnami/redis:7"

        assert rewrite(image) == "myorg/not-bitnami/tools/bitnamilegacy/redis:7"
        assert needs_rewrite(rewrite(image)) is False

    def test_unchanged_when_no_rewrite_needed(self):
        assert rewrite("nginx:1.25") == "nginx:1.25"
        assert rewrite("docker.io/bitnamilegacy/redis:7.0") == "docker.io/bitnamilegacy/redis:7.0"

    def test_rewrite_is_idempotent(self):
        """Rewriting an already rewritten image is a no-op"""
        once = rewrite("docker.io/bitnami/redis:7.0")
        assert rewrite(once) == once
        assert needs_rewrite(once) is False


class TestReferencesBitnami:
    """Tests for references_bitnami()"""

    def test_matches_legacy_and_current(self):
        assert references_bitnami("bitnami/redis:7") is True
        assert references_bitnami("docker.io/bitnamilegacy/redis:7") is True
        assert references_bitnami("quay.io/Bitnami-labs/sealed-secrets") is True

    def test_no_match(self):
        assert references_bitnami("redis:7") is False
        assert references_bitnami(None) is False
