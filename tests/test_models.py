"""Tests for pairing data models and their defensive coercion."""

import pytest

from photo_pairing.models import (
    CandidateScore,
    GroupResult,
    PairingMetrics,
    PairingResult,
    PairingWarning,
    Photo,
    PhotoInsight,
    PhotoRole,
    ProposedGroup,
    RankEntry,
    ScoreComponent,
    SimilarityRanking,
    WarningCode,
)


class TestPhotoRole:
    """Test suite for PhotoRole parsing."""

    def test_from_str_known_values(self):
        """Test known role strings."""
        assert PhotoRole.from_str("front") is PhotoRole.FRONT
        assert PhotoRole.from_str(" BACK ") is PhotoRole.BACK

    def test_from_str_unknown_and_invalid(self):
        """Test unknown and invalid role values."""
        assert PhotoRole.from_str("lid") is PhotoRole.UNKNOWN
        assert PhotoRole.from_str(None) is None
        assert PhotoRole.from_str(42) is None
        assert PhotoRole.from_str("   ") is None


class TestPhoto:
    """Test suite for Photo construction."""

    def test_from_dict_basic_listing_entry(self):
        """Test a basic folder listing entry."""
        photo = Photo.from_dict(
            {
                "url": "https://cdn.example.com/a/IMG_01.JPG?raw=1",
                "name": "IMG_01.JPG",
                "path": "/vitamins/IMG_01.JPG",
                "size": 250_000,
                "width": 2000,
                "height": 2000,
            },
            order=3,
        )
        assert photo is not None
        assert photo.folder == "/vitamins"
        assert photo.folder_key == "vitamins"
        assert photo.order == 3
        assert photo.basename == "img_01.jpg"
        assert photo.megapixels == pytest.approx(4.0)
        assert photo.aspect_ratio == pytest.approx(1.0)

    def test_from_dict_reads_media_info_dimensions(self):
        """Test dimensions are read from media info."""
        photo = Photo.from_dict({
            "url": "https://x/p.jpg",
            "media_info": {"metadata": {"dimensions": {"width": 1200, "height": 800}}},
        })
        assert (photo.width, photo.height) == (1200, 800)
        assert photo.aspect_ratio == pytest.approx(1.5)

    def test_from_dict_explicit_order_wins(self):
        """Test an explicit order overrides the position."""
        photo = Photo.from_dict({"url": "https://x/p.jpg", "order": 7}, order=1)
        assert photo.order == 7

    def test_from_dict_coerces_bad_values(self):
        """Test malformed values are coerced or dropped."""
        photo = Photo.from_dict({
            "url": "https://x/p.jpg",
            "name": 12,
            "role": ["front"],
            "width": "wide",
            "height": -5,
            "size": float("nan"),
            "hasVisibleText": "yes",
            "dominantColor": "  ",
        })
        assert photo.name == ""
        assert photo.role is None
        assert photo.width is None and photo.height is None
        assert photo.size_bytes is None
        assert photo.has_visible_text is None
        assert photo.dominant_color is None
        assert photo.megapixels is None

    def test_from_dict_without_url(self):
        """Test entries without a URL are rejected."""
        assert Photo.from_dict({"name": "orphan.jpg"}) is None
        assert Photo.from_dict("not a dict") is None


class TestPhotoInsight:
    """Test suite for PhotoInsight construction."""

    def test_merges_ocr_sources(self):
        """Test OCR text sources are merged."""
        insight = PhotoInsight.from_dict({
            "url": "https://x/back.jpg",
            "ocrText": "Supplement Facts",
            "textBlocks": ["Serving Size", "2 capsules"],
            "ocr": {"lines": ["Other ingredients"]},
            "role": "back",
            "hasVisibleText": True,
        })
        assert insight.role is PhotoRole.BACK
        assert insight.has_visible_text is True
        assert insight.ocr_text == "Supplement Facts Serving Size 2 capsules Other ingredients"

    def test_requires_identity(self):
        """Test an insight needs a URL or name."""
        assert PhotoInsight.from_dict({"role": "front"}) is None


class TestProposedGroup:
    """Test suite for ProposedGroup construction."""

    def test_defaults_and_clamping(self):
        """Test defaults and confidence clamping."""
        group = ProposedGroup.from_dict({"product": "Fish Oil", "confidence": 3.5}, index=1)
        assert group.group_id == "group_2"
        assert group.confidence == 1.0
        assert group.label == "Fish Oil"
        assert group.images == []

    def test_camel_case_hints(self):
        """Test camelCase hint keys are accepted."""
        group = ProposedGroup.from_dict({
            "groupId": "g-7",
            "images": ["a.jpg", None, "  ", "b.jpg"],
            "scan": {"sourceImageUrl": "https://x/a.jpg"},
            "secondaryImageUrl": "https://x/b.jpg",
            "supportingImageUrls": ["https://x/c.jpg"],
            "claims": ["vegan", 5],
            "confidence": "high",
        })
        assert group.group_id == "g-7"
        assert group.images == ["a.jpg", "b.jpg"]
        assert group.source_image_url == "https://x/a.jpg"
        assert group.secondary_image_url == "https://x/b.jpg"
        assert group.supporting_image_urls == ["https://x/c.jpg"]
        assert group.claims == ["vegan"]
        assert group.confidence == 0.0

    def test_non_dict_input(self):
        """Test non-mapping input yields a placeholder group."""
        group = ProposedGroup.from_dict(None, index=0)
        assert group.group_id == "group_1"


class TestScoresAndResults:
    """Test suite for score and result containers."""

    def test_candidate_score_total_and_dict(self):
        """Test score totals and serialization."""
        score = CandidateScore(
            photo_url="https://x/a.jpg",
            group_id="g1",
            base=10,
            embedding_contribution=16,
            components=[ScoreComponent("role", 12, "front")],
        )
        assert score.total == 26
        data = score.to_dict()
        assert data["total"] == 26
        assert data["components"] == [{"label": "role", "value": 12, "detail": "front"}]

    def test_similarity_ranking_accessors(self):
        """Test ranking top, runner-up and lookup accessors."""
        ranking = SimilarityRanking(
            photo_url="https://x/a.jpg",
            entries=[RankEntry("a", 0.8), RankEntry("b", 0.55)],
        )
        assert ranking.top.group_id == "a"
        assert ranking.runner_up.group_id == "b"
        assert ranking.similarity_to("b") == 0.55
        assert ranking.similarity_to("c") is None
        assert SimilarityRanking(photo_url="x").top is None

    def test_pairing_result_to_dict(self):
        """Test result serialization."""
        result = PairingResult(
            groups=[GroupResult("g1", "Fish Oil", images=["a", "b"], hero_url="a", back_url="b")],
            orphans=["c"],
            warnings=[PairingWarning(WarningCode.EMPTY_GROUP, "empty", "g2")],
            embeddings_enabled=False,
            metrics=PairingMetrics(total_photos=3),
        )
        data = result.to_dict()
        assert data["groups"][0]["images"] == ["a", "b"]
        assert "scores" not in data["groups"][0]
        assert data["warnings"] == [{"code": "empty_group", "message": "empty", "group_id": "g2"}]
        assert data["metrics"]["total_photos"] == 3
        assert result.group("g1").label == "Fish Oil"
        assert result.group("missing") is None
