"""End-to-end tests for the photo pairing orchestrator."""

import numpy as np
import pytest

from photo_pairing.config import PairingConfig
from photo_pairing.models import PhotoRole, ProposedGroup, WarningCode
from photo_pairing.orchestrator import PhotoPairingOrchestrator

from conftest import StaticEmbedder, make_photo


def listing_entry(name, folder="products/a", **extra):
    entry = {
        "url": f"https://cdn.example.com/{folder}/{name}",
        "name": name,
        "path": f"/{folder}/{name}",
    }
    entry.update(extra)
    return entry


def codes(result):
    return [w.code for w in result.warnings]


def strict_back_config(**assignment):
    """Config where no back is inferred from visual similarity alone."""
    config = PairingConfig()
    config.embedding.back_min_similarity = 0.99
    for key, value in assignment.items():
        setattr(config.assignment, key, value)
    return config


class TestDegradedMode:
    """Test suite for runs without embeddings."""

    @pytest.mark.asyncio
    async def test_front_and_back_without_embeddings(self):
        """Test front and back are paired without embeddings."""
        photos = [listing_entry("IMG_3.jpg"), listing_entry("back.jpg"), listing_entry("front.jpg")]
        insights = [
            {"url": photos[2]["url"], "role": "front", "hasVisibleText": True},
            {"url": photos[1]["url"], "role": "back", "ocrText": "Supplement Facts"},
        ]
        groups = [{"groupId": "a", "product": "Fish Oil", "images": [p["url"] for p in photos]}]

        result = await PhotoPairingOrchestrator().run(photos, groups, insights, folder="products/a")

        group = result.group("a")
        assert group.images == [photos[2]["url"], photos[1]["url"]]
        assert group.hero_url == photos[2]["url"]
        assert group.back_url == photos[1]["url"]
        assert result.orphans == [photos[0]["url"]]
        assert not result.embeddings_enabled
        assert codes(result) == [WarningCode.EMBEDDING_UNAVAILABLE]
        assert result.metrics.embedding_calls == 0

    @pytest.mark.asyncio
    async def test_disabled_config_makes_zero_embedding_calls(self):
        """Test a disabled engine makes no provider calls."""
        photos = [make_photo(f"IMG_{i}.jpg", order=i) for i in range(6)]
        provider = StaticEmbedder({p.url: [1.0, float(i)] for i, p in enumerate(photos)})
        config = PairingConfig()
        config.embedding.enabled = False
        groups = [
            ProposedGroup(group_id="a", images=[p.url for p in photos[:4]]),
            ProposedGroup(group_id="b", images=[p.url for p in photos[2:]]),
        ]

        result = await PhotoPairingOrchestrator(config, provider).run(photos, groups)

        assert provider.calls == []
        assert result.metrics.embedding_calls == 0
        for group in result.groups:
            assert len(group.images) <= 2
        assert "disabled by configuration" in result.warnings[0].message

    @pytest.mark.asyncio
    async def test_all_embedding_failures_fall_back(self):
        """Test total provider failure falls back with a warning."""
        photos = [make_photo("front.jpg", role=PhotoRole.FRONT), make_photo("IMG_2.jpg")]
        provider = StaticEmbedder({}, failing=[p.url for p in photos])
        groups = [ProposedGroup(group_id="a", images=[p.url for p in photos])]

        result = await PhotoPairingOrchestrator(embedding_provider=provider).run(photos, groups)

        assert result.metrics.embedding_calls == 2
        assert result.metrics.embedding_failures == 2
        assert not result.embeddings_enabled
        assert result.group("a").images == [photos[0].url, photos[1].url]
        assert "RuntimeError" in result.warnings[0].message

    def test_run_sync(self):
        """Test the synchronous entry point."""
        photos = [make_photo("front.jpg", role=PhotoRole.FRONT)]
        result = PhotoPairingOrchestrator().run_sync(photos, [ProposedGroup(group_id="a", images=[photos[0].url])])
        assert result.group("a").images == [photos[0].url]


class TestEmbeddingMode:
    """Test suite for runs with embeddings."""

    @pytest.mark.asyncio
    async def test_photo_goes_to_group_with_decisive_margin(self):
        """Test a decisively closer photo joins that group."""
        hero_a = make_photo("IMG_1.jpg", role=PhotoRole.FRONT, order=0)
        hero_b = make_photo("IMG_2.jpg", role=PhotoRole.FRONT, order=1)
        x = make_photo("IMG_3.jpg", order=2)
        provider = StaticEmbedder({
            hero_a.url: [1.0, 0.0, 0.0],
            hero_b.url: [0.0, 1.0, 0.0],
            x.url: [0.80, 0.55, float(np.sqrt(1 - 0.80 ** 2 - 0.55 ** 2))],
        })
        groups = [
            ProposedGroup(group_id="a", images=[hero_a.url, x.url]),
            ProposedGroup(group_id="b", images=[hero_b.url, x.url]),
        ]

        result = await PhotoPairingOrchestrator(strict_back_config(), provider).run(
            [hero_a, hero_b, x], groups, include_diagnostics=True
        )

        assert result.embeddings_enabled
        assert result.group("a").images == [hero_a.url, x.url]
        assert result.group("b").images == [hero_b.url]
        assert result.metrics.decisive_assignments == 1
        assert result.metrics.embedding_calls == 3

        x_score = next(s for s in result.group("a").scores if s.photo_url == x.url)
        assert x_score.similarity.blended == pytest.approx(0.80, abs=1e-5)
        assert x_score.margin == pytest.approx(0.25, abs=1e-5)
        assert x_score.embedding_contribution == 16
        assert x_score.assigned
        totals = [s.total for s in result.group("a").scores]
        assert totals == sorted(totals, reverse=True)

    @pytest.mark.asyncio
    async def test_single_candidate_group_has_one_entry(self):
        """Test a single-candidate group returns one image."""
        c1 = make_photo("IMG_1.jpg", folder="products/c", order=0)
        d1 = make_photo("IMG_2.jpg", folder="products/d", order=1, role=PhotoRole.FRONT)
        d2 = make_photo("IMG_3.jpg", folder="products/d", order=2)
        provider = StaticEmbedder({
            c1.url: [1.0, 0.0],
            d1.url: [0.0, 1.0],
            d2.url: [0.05, 1.0],
        })
        groups = [
            ProposedGroup(group_id="c", images=[c1.url]),
            ProposedGroup(group_id="d", images=[d1.url, d2.url]),
        ]

        result = await PhotoPairingOrchestrator(strict_back_config(), provider).run([c1, d1, d2], groups)

        group_c = result.group("c")
        assert group_c.images == [c1.url]
        assert group_c.hero_url == c1.url
        assert group_c.back_url is None
        assert result.group("d").images == [d1.url, d2.url]

    @pytest.mark.asyncio
    async def test_underfilled_group_warns_without_error(self):
        """Test an underfilled group is reported as a warning."""
        g1 = make_photo("IMG_1.jpg", role=PhotoRole.FRONT, order=0)
        h1 = make_photo("IMG_2.jpg", role=PhotoRole.FRONT, order=1)
        o1 = make_photo("IMG_3.jpg", order=2)
        o2 = make_photo("IMG_4.jpg", order=3)
        provider = StaticEmbedder({
            g1.url: [1.0, 0.0],
            h1.url: [0.0, 1.0],
            o1.url: [0.05, 1.0],
            o2.url: [0.02, 1.0],
        })
        groups = [
            ProposedGroup(group_id="g", images=[g1.url]),
            ProposedGroup(group_id="h", images=[h1.url, o1.url, o2.url]),
        ]
        config = strict_back_config(min_assign=3, max_duplicates_per_group=0)

        result = await PhotoPairingOrchestrator(config, provider).run([g1, h1, o1, o2], groups)

        assert result.group("g").images == [g1.url]
        underfilled = [w for w in result.warnings if w.code is WarningCode.UNDERFILLED_GROUP]
        assert [w.group_id for w in underfilled] == ["g"]
        assert result.group("h").images[0] == h1.url
        assert sorted(result.group("h").images) == sorted([h1.url, o1.url, o2.url])

    @pytest.mark.asyncio
    async def test_partial_embedding_failure_keeps_engine_enabled(self):
        """Test partial failures keep embedding mode."""
        hero = make_photo("IMG_1.jpg", role=PhotoRole.FRONT, order=0)
        close = make_photo("IMG_2.jpg", order=1)
        broken = make_photo("IMG_3.jpg", order=2)
        provider = StaticEmbedder(
            {hero.url: [1.0, 0.0], close.url: [0.9, 0.1]},
            failing=[broken.url],
        )
        groups = [ProposedGroup(group_id="a", images=[hero.url, close.url, broken.url])]

        result = await PhotoPairingOrchestrator(embedding_provider=provider).run([hero, close, broken], groups)

        assert result.embeddings_enabled
        assert result.metrics.embedding_failures == 1
        assert result.group("a").images == [hero.url, close.url]
        assert result.orphans == [broken.url]


class TestRunLevelBehaviour:
    """Test suite for run-level input handling and warnings."""

    @pytest.mark.asyncio
    async def test_empty_group_warning(self):
        """Test an empty group is reported."""
        photos = [make_photo("front.jpg", role=PhotoRole.FRONT)]
        groups = [
            ProposedGroup(group_id="a", images=[photos[0].url]),
            ProposedGroup(group_id="ghost", name="Ghost Product", folder="products/missing"),
        ]
        result = await PhotoPairingOrchestrator().run(photos, groups)

        empty = [w for w in result.warnings if w.code is WarningCode.EMPTY_GROUP]
        assert len(empty) == 1
        assert empty[0].group_id == "ghost"
        assert "Ghost Product" in empty[0].message
        assert result.group("ghost").images == []

    @pytest.mark.asyncio
    async def test_duplicate_photo_entries_and_group_ids(self):
        """Test duplicate photos are dropped and duplicate ids renamed."""
        entry = listing_entry("front.jpg")
        groups = [{"group_id": "a", "images": [entry["url"]]}, {"group_id": "a"}]
        result = await PhotoPairingOrchestrator().run([entry, dict(entry), {"name": "no-url.jpg"}], groups)

        assert result.metrics.total_photos == 1
        assert [g.group_id for g in result.groups] == ["a", "a_2"]

    @pytest.mark.asyncio
    async def test_caller_inputs_are_not_modified(self):
        """Test runs leave caller photos and groups untouched."""
        front = make_photo("front.jpg", role=PhotoRole.FRONT)
        back = make_photo("back.jpg", role=PhotoRole.BACK)
        groups = [
            ProposedGroup(group_id="a", images=[front.url, back.url]),
            ProposedGroup(group_id="a", images=[back.url]),
        ]
        provider = StaticEmbedder({front.url: [1.0, 0.0], back.url: [0.0, 1.0]})
        orchestrator = PhotoPairingOrchestrator(embedding_provider=provider)

        first = await orchestrator.run([front, back], groups)

        assert [g.group_id for g in groups] == ["a", "a"]
        assert all(g.hero_url is None and g.back_url is None for g in groups)
        assert front.embedding is None and back.embedding is None

        second = await orchestrator.run([front, back], groups)
        assert [g.to_dict() for g in first.groups] == [g.to_dict() for g in second.groups]

    @pytest.mark.asyncio
    async def test_to_dict_round_trip_shape(self):
        """Test the serialized result shape."""
        photos = [make_photo("front.jpg", role=PhotoRole.FRONT)]
        result = await PhotoPairingOrchestrator().run(photos, [ProposedGroup(group_id="a", images=[photos[0].url])])
        data = result.to_dict()
        assert data["groups"][0]["images"] == [photos[0].url]
        assert data["embeddings_enabled"] is False
        assert data["warnings"][0]["code"] == "embedding_unavailable"


def random_scenario(seed, photo_count=12, group_count=3, dim=8):
    rng = np.random.RandomState(seed)
    photos = [make_photo(f"IMG_{seed}_{i}.jpg", order=i) for i in range(photo_count)]
    vectors = {p.url: rng.normal(size=dim).tolist() for p in photos}
    groups = []
    for g in range(group_count):
        picks = rng.choice(photo_count, size=6, replace=False)
        groups.append(ProposedGroup(group_id=f"g{g}", images=[photos[i].url for i in sorted(picks)]))
    return photos, groups, vectors


def fresh_groups(groups):
    return [ProposedGroup(group_id=g.group_id, images=list(g.images)) for g in groups]


class TestProperties:
    """Test suite for cross-run properties."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 7, 42])
    @pytest.mark.parametrize("use_embeddings", [True, False])
    async def test_exclusivity_and_hero_stability(self, seed, use_embeddings):
        """Test exclusivity and hero stability on random scenarios."""
        photos, groups, vectors = random_scenario(seed)
        provider = StaticEmbedder(vectors) if use_embeddings else None
        config = PairingConfig()
        config.assignment.min_assign = 4
        config.assignment.max_duplicates_per_group = 2

        result = await PhotoPairingOrchestrator(config, provider).run(photos, groups)

        placed = [url for group in result.groups for url in group.images]
        assert len(placed) == len(set(placed))
        for group in result.groups:
            if group.hero_url:
                assert group.images[0] == group.hero_url
                others = [url for g in result.groups if g.group_id != group.group_id for url in g.images]
                assert group.hero_url not in others
            if not use_embeddings:
                assert len(group.images) <= 2
        assert sorted(placed + result.orphans) == sorted(p.url for p in photos)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [3, 11])
    async def test_deterministic(self, seed):
        """Test identical inputs produce identical output."""
        photos, groups, vectors = random_scenario(seed)

        first = await PhotoPairingOrchestrator(embedding_provider=StaticEmbedder(vectors)).run(
            photos, fresh_groups(groups)
        )
        second = await PhotoPairingOrchestrator(embedding_provider=StaticEmbedder(vectors)).run(
            photos, fresh_groups(groups)
        )

        assert [g.to_dict() for g in first.groups] == [g.to_dict() for g in second.groups]
        assert first.orphans == second.orphans
