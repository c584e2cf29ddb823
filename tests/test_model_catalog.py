import pytest

from comfy_orchestrator.model_catalog import (
    AVATAR_WORKFLOW,
    GenerationDefaults,
    ModelCatalog,
    ModelDescriptor,
    SelectionFlag,
    parse_selection_options,
)


@pytest.fixture
def catalog():
    return ModelCatalog()


class TestResolve:
    """Test model lookup by key and filename."""

    def test_by_key(self, catalog):
        assert catalog.resolve("realism").filename == "realismEngineSDXL_v30VAE.safetensors"

    def test_by_filename(self, catalog):
        assert catalog.resolve("deliberate_v2.safetensors").key == "deliberate"

    def test_by_filename_case_insensitive(self, catalog):
        assert catalog.resolve("DELIBERATE_V2.SAFETENSORS").key == "deliberate"

    @pytest.mark.parametrize("value", ["unknown-model", "", None])
    def test_unknown_gives_default(self, catalog, value):
        assert catalog.resolve(value) == catalog.default
        assert catalog.default.key == "anything"

    def test_get_requires_exact_filename(self, catalog):
        assert catalog.get("AnythingXL_xl.safetensors").key == "anything"
        with pytest.raises(KeyError):
            catalog.get("anything")

    def test_custom_default(self):
        assert ModelCatalog(default_key="pony").default.key == "pony"

    def test_unknown_default_key_uses_first(self):
        assert ModelCatalog(default_key="missing").default.key == "anything"

    def test_empty_catalog_rejected(self):
        with pytest.raises(ValueError):
            ModelCatalog(models=[])

    def test_custom_models(self):
        model = ModelDescriptor(
            filename="custom.safetensors",
            key="custom",
            name="Custom",
            style="anime",
            default_settings=GenerationDefaults(steps=10, cfg=5.0, sampler_name="euler"),
        )
        catalog = ModelCatalog(models=[model], default_key="custom")

        assert catalog.list() == [model]
        assert catalog.resolve("whatever") is model


class TestParseSelectionOptions:
    """Test parsing of free-form command text."""

    def test_prompt_text_and_flags(self):
        options = parse_selection_options("a fox in snow --FURRY --fast")

        assert options.text == "a fox in snow"
        assert options.flags == {SelectionFlag.FURRY, SelectionFlag.FAST}
        assert options.style_flags == [SelectionFlag.FURRY]

    def test_value_options(self):
        options = parse_selection_options("castle --model Realism --size 832x1216 --seed 42")

        assert options.model_key == "realism"
        assert (options.width, options.height) == (832, 1216)
        assert options.seed == 42
        assert options.text == "castle"

    def test_inline_values(self):
        options = parse_selection_options("--model=pony --seed=7")

        assert options.model_key == "pony"
        assert options.seed == 7

    @pytest.mark.parametrize("ratio,expected", [("16:9", (1024, 576)), ("2:3", (704, 1024)), ("bad", (1024, 1024))])
    def test_aspect_ratio(self, ratio, expected):
        options = parse_selection_options(f"--ar {ratio}")
        assert (options.width, options.height) == expected

    def test_invalid_values_ignored(self):
        options = parse_selection_options("--size huge --seed abc")

        assert options.width is None
        assert options.height is None
        assert options.seed is None

    def test_unknown_flags_collected(self):
        options = parse_selection_options("cat --sparkly")

        assert options.unknown == ["--sparkly"]
        assert options.text == "cat"

    def test_avatar_sets_workflow(self):
        options = parse_selection_options("portrait --avatar")

        assert SelectionFlag.AVATAR in options.flags
        assert options.workflow == AVATAR_WORKFLOW

    def test_named_model_flag(self):
        options = parse_selection_options("--pony")

        assert options.model_key == "pony"
        assert SelectionFlag.FURRY in options.flags

    def test_explicit_model_wins_over_named_flag(self):
        assert parse_selection_options("--model realism --deliberate").model_key == "realism"

    def test_empty_text(self):
        options = parse_selection_options(None)

        assert options.flags == set()
        assert options.text == ""


class TestParseSelectionFlags:
    """Test flag-driven model selection."""

    def test_style_flag_picks_model(self, catalog):
        assert catalog.parse_selection_flags("--realistic").key == "realism"
        assert catalog.parse_selection_flags("--anthropomorphic").key == "pony"
        assert catalog.parse_selection_flags("--creative").key == "deliberate"
        assert catalog.parse_selection_flags("--manga").key == "anything"

    def test_no_flags_gives_default(self, catalog):
        model = catalog.parse_selection_flags("just a prompt")

        assert model == catalog.default

    def test_fast_override(self, catalog):
        model = catalog.parse_selection_flags("--realistic --fast")

        assert model.key == "realism"
        assert model.default_settings.steps == 15
        assert model.default_settings.cfg == 6.0
        assert model.default_settings.sampler_name == "dpmpp_2m"

    def test_quality_override(self, catalog):
        settings = catalog.parse_selection_flags("--hq").default_settings

        assert (settings.steps, settings.cfg) == (30, 8.0)

    def test_quality_wins_over_fast(self, catalog):
        settings = catalog.parse_selection_flags("--fast --quality").default_settings

        assert (settings.steps, settings.cfg) == (30, 8.0)

    def test_overrides_do_not_mutate_catalog(self, catalog):
        catalog.parse_selection_flags("--fast")

        assert catalog.default.default_settings.steps == 25

    def test_model_option_beats_style(self, catalog):
        assert catalog.parse_selection_flags("--anime --model deliberate").key == "deliberate"

    def test_by_flags_accepts_strings(self, catalog):
        assert catalog.by_flags(["photorealistic", "3d"]).key == "realism"
        assert catalog.by_flags(["nothing"]) == catalog.default


class TestRecommendAndStats:
    def test_recommend_for_prompt(self, catalog):
        recommendations = catalog.recommend_for_prompt("A photo of a fox in the snow")

        assert [r["style"] for r in recommendations] == ["realistic", "furry"]
        assert recommendations[0]["matches"] == ["photo"]
        assert recommendations[0]["confidence"] == pytest.approx(1 / 6)
        assert [m.key for m in recommendations[1]["models"]] == ["pony"]

    def test_recommend_no_matches(self, catalog):
        assert catalog.recommend_for_prompt("xyz") == []

    def test_stats(self, catalog):
        stats = catalog.stats()

        assert stats["total"] == 4
        assert stats["by_style"] == {"anime": 1, "realistic": 1, "furry": 1, "artistic": 1}
        assert stats["by_speed"] == {"medium": 2, "slow": 1, "fast": 1}
        assert stats["by_quality"] == {"high": 4}
