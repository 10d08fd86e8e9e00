import math
import os
import tempfile
import unittest
from unittest import mock

import numpy as np
import yaml

from images import figure, leg_table, noisy
from rigsheet import model as model_module
from rigsheet.character import (
    SAMPLES,
    character_from_dict,
    load_character,
    load_presets,
    load_sample,
    parse_clips,
    parse_layout,
    parse_pose,
)
from rigsheet.model import clear_model_cache, model_from_raster, model_from_table
from rigsheet.raster import save_png
from rigsheet.renderer import FrameLayout, render_frame
from rigsheet.segmenter import PartId


class TestPoses(unittest.TestCase):
    def test_presets_bundle_hero_and_walker(self) -> None:
        presets = load_presets()
        self.assertEqual(set(presets["hero"]), {"idle", "run", "grab", "jump", "fall", "attack"})
        self.assertEqual(presets["walker"]["walk"]["rate"], 12)
        self.assertEqual(len(presets["walker"]["walk"]["poses"]), 8)

    def test_degrees_convert_joints_only(self) -> None:
        pose = parse_pose({"leftHip": 90, "bodyDy": -2, "headDy": 1}, "degrees")
        self.assertAlmostEqual(pose["leftHip"], math.pi / 2)
        self.assertEqual(pose["bodyDy"], -2.0)
        self.assertEqual(pose["headDy"], 1.0)

    def test_radians_pass_through(self) -> None:
        self.assertEqual(parse_pose({"leftKnee": 0.5}), {"leftKnee": 0.5})
        self.assertEqual(parse_pose(None), {})

    def test_pose_values_must_be_numbers(self) -> None:
        for raw in ({"leftHip": "up"}, {"leftHip": True}, [0.1, 0.2]):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_pose(raw)


class TestClips(unittest.TestCase):
    def test_preset_clip_in_degrees(self) -> None:
        clips = parse_clips({"walk": {"preset": "walker/walk"}}, units="radians")
        walk = clips["walk"]
        self.assertEqual(len(walk.poses), 8)
        self.assertEqual(walk.rate, 12)
        self.assertTrue(walk.loop)
        self.assertAlmostEqual(walk.poses[0]["leftShoulder"], math.radians(32))

    def test_own_poses_on_a_preset_use_file_units(self) -> None:
        clips = parse_clips({"run": {"preset": "hero/run", "poses": [{"leftHip": 0.5}]}}, units="radians")
        self.assertEqual(clips["run"].poses, ({"leftHip": 0.5},))
        self.assertEqual(clips["run"].rate, 14)
        clips = parse_clips({"run": {"preset": "hero/run", "poses": [{"leftHip": 30}]}}, units="degrees")
        self.assertAlmostEqual(clips["run"].poses[0]["leftHip"], math.radians(30))

    def test_preset_overrides(self) -> None:
        clips = parse_clips({"sprint": {"preset": "hero/run", "rate": 20, "loop": False}})
        self.assertEqual(clips["sprint"].rate, 20)
        self.assertFalse(clips["sprint"].loop)
        self.assertEqual(len(clips["sprint"].poses), 8)

    def test_hero_jump_does_not_loop(self) -> None:
        clips = parse_clips({"jump": {"preset": "hero/jump"}})
        self.assertFalse(clips["jump"].loop)
        self.assertEqual(clips["jump"].rate, 18)

    def test_inline_clip(self) -> None:
        clips = parse_clips({"wave": {"poses": [{"leftShoulder": 45}, {}], "rate": 6}}, units="degrees")
        self.assertAlmostEqual(clips["wave"].poses[0]["leftShoulder"], math.pi / 4)
        self.assertEqual(clips["wave"].poses[1], {})

    def test_clip_order_is_kept(self) -> None:
        clips = parse_clips({"b": {"poses": [{}]}, "a": {"poses": [{}]}})
        self.assertEqual(list(clips), ["b", "a"])

    def test_bad_clips(self) -> None:
        for raw in (None, {}, {"x": []}, {"x": {"poses": []}}, {"x": {"preset": "hero/dance"}}, {"x": {"preset": "nope"}}):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_clips(raw)


class TestLayout(unittest.TestCase):
    def test_parse_layout(self) -> None:
        layout = parse_layout({"width": 56, "height": 72, "origin": [4, 4]})
        self.assertEqual(layout, FrameLayout(56, 72, 1.0, (4, 4)))
        self.assertEqual(parse_layout({"width": 32, "height": 32, "scale": "auto"}).scale, "auto")

    def test_bad_layout(self) -> None:
        for raw in (None, {"width": 32}, {"width": 32, "height": "tall"}, {"width": 32, "height": 32, "origin": [1]}):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_layout(raw)


class TestCharacterFiles(unittest.TestCase):
    def setUp(self) -> None:
        clear_model_cache()
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name
        save_png(figure().pixels, os.path.join(self.tmp, "figure.png"))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write(self, name, data) -> str:
        path = os.path.join(self.tmp, name)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f)
        return path

    def source_config(self, **extra):
        data = {
            "name": "fig",
            "source": "figure.png",
            "frame": {"width": 20, "height": 40, "origin": [0, 0]},
            "clips": {"stand": {"poses": [{}]}},
        }
        data.update(extra)
        return data

    def test_load_from_image(self) -> None:
        character = load_character(self.write("fig.yaml", self.source_config()))
        self.assertEqual(character.key, f"fig@{figure().digest}")
        self.assertEqual((character.model.width, character.model.height), (20, 40))
        self.assertEqual(character.columns, 2)
        self.assertIsNone(character.rows)

    def test_same_image_reuses_model(self) -> None:
        path = self.write("fig.yaml", self.source_config())
        self.assertIs(load_character(path).model, load_character(path).model)

    def test_different_bands_build_new_model(self) -> None:
        a = load_character(self.write("a.yaml", self.source_config()))
        b = load_character(self.write("b.yaml", self.source_config(segmentation={"head": 0.2})))
        self.assertIsNot(a.model, b.model)

    def test_build_atlas_from_file(self) -> None:
        character = load_character(self.write("fig.yaml", self.source_config()))
        atlas = character.builder().build(character.key, character.model, character.clips, character.layout)
        raster = figure()
        np.testing.assert_array_equal(atlas.frame_image(0)[:, :, :3][raster.opaque_mask], raster.pixels[:, :, :3][raster.opaque_mask])

    def test_degrees_apply_to_inline_clips(self) -> None:
        config = self.source_config(angle_units="degrees", clips={"reach": {"poses": [{"rightShoulder": 180}]}})
        character = load_character(self.write("fig.yaml", config))
        self.assertAlmostEqual(character.clips["reach"].poses[0]["rightShoulder"], math.pi)

    def test_hand_authored_table(self) -> None:
        data = dict(leg_table(), frame={"width": 40, "height": 60}, atlas={"columns": 4, "rows": 1}, clips={"kick": {"poses": [{}, {"leftHip": 0.3}]}})
        character = character_from_dict(data)
        self.assertEqual(character.key, "leg")
        self.assertEqual((character.columns, character.rows), (4, 1))
        self.assertEqual(character.model.commands(PartId.HEAD), [])
        self.assertEqual(len(character.clips["kick"].poses), 2)

    def test_config_errors(self) -> None:
        bad = [
            [],
            {"clips": {"x": {"poses": [{}]}}, "frame": {"width": 1, "height": 1}},
            dict(self.source_config(), parts={}),
            self.source_config(angle_units="gradians"),
            self.source_config(atlas={"columns": 0}),
            self.source_config(atlas={"rows": -2}),
            self.source_config(atlas=[2]),
            self.source_config(segmentation={"head": 0.9, "hip": 0.5}),
            self.source_config(segmentation={"neck": 0.1}),
            self.source_config(background="fff"),
        ]
        for data in bad:
            with self.subTest(data=data):
                with self.assertRaises(ValueError):
                    character_from_dict(data, base_dir=self.tmp)


class TestModelCache(unittest.TestCase):
    def setUp(self) -> None:
        clear_model_cache()

    def test_same_input_returns_same_model(self) -> None:
        self.assertIs(model_from_raster(figure(), name="fig"), model_from_raster(figure(), name="fig"))

    def test_each_caller_keeps_its_own_name(self) -> None:
        hoodlum = model_from_raster(figure(), name="hoodlum")
        thug = model_from_raster(figure(), name="thug")
        self.assertEqual(hoodlum.name, "hoodlum")
        self.assertEqual(thug.name, "thug")
        self.assertEqual(thug.to_table()["name"], "thug")
        self.assertIs(thug.parts, hoodlum.parts)
        self.assertEqual(model_from_raster(figure(), name="hoodlum").name, "hoodlum")

    def test_background_is_part_of_the_key(self) -> None:
        plain = model_from_raster(figure())
        keyed = model_from_raster(figure(background="f4b187"))
        self.assertEqual(len(keyed.palette), len(plain.palette) - 1)

    def test_cache_is_bounded(self) -> None:
        with mock.patch.object(model_module, "MODEL_CACHE_SIZE", 2):
            first = model_from_raster(noisy(seed=1))
            model_from_raster(noisy(seed=2))
            model_from_raster(noisy(seed=3))
            self.assertLessEqual(len(model_module._MODEL_CACHE), 2)
            self.assertIsNot(model_from_raster(noisy(seed=1)), first)


class TestSamples(unittest.TestCase):
    def test_hero_sample(self) -> None:
        self.assertIn("hero", SAMPLES)
        hero = load_sample("hero")
        self.assertEqual(hero.key, "hero")
        self.assertEqual((hero.model.width, hero.model.height), (48, 65))
        self.assertEqual(len(hero.model.palette), 15)
        self.assertEqual(hero.model.pivots["leftKnee"], (14.0, 55.0))
        self.assertEqual(hero.layout, FrameLayout(56, 72, 1.0, (4, 4)))
        self.assertEqual(list(hero.clips), ["idle", "run", "grab", "jump", "fall", "attack"])
        for part in PartId:
            self.assertTrue(hero.model.commands(part), part.key)

    def test_hero_atlas(self) -> None:
        hero = load_sample("hero")
        atlas = hero.builder().build(hero.key, hero.model, hero.clips, hero.layout)
        self.assertEqual(len(atlas.frames), 19)
        self.assertEqual((atlas.columns, atlas.rows), (2, 10))
        self.assertEqual(atlas.clips["jump"]["frameIndices"], (14, 15))
        self.assertTrue(atlas.frame_image(0)[:, :, 3].any())
        # neutral idle frame sits at the fixed (4, 4) origin
        self.assertFalse(atlas.frame_image(0)[:4].any())

    def test_unknown_sample(self) -> None:
        with self.assertRaises(ValueError):
            load_sample("villain")


class TestPartsTable(unittest.TestCase):
    def test_table_round_trip_renders_identically(self) -> None:
        clear_model_cache()
        model = model_from_raster(figure(), name="fig")
        table = yaml.safe_load(yaml.safe_dump(model.to_table(), sort_keys=False))
        again = model_from_table(table)
        self.assertEqual(again.parts, model.parts)
        self.assertEqual(again.palette, model.palette)
        layout = FrameLayout(20, 40, 1, (0, 0))
        np.testing.assert_array_equal(render_frame(again, {}, layout), render_frame(model, {}, layout))

    def test_table_validation(self) -> None:
        base = leg_table()
        cases = [
            dict(base, pivots={"leftHip": [1, 2]}),
            dict(base, parts={"tail": []}),
            dict(base, parts={"head": [[9, 0, 0, 1, 1]]}),
            dict(base, parts={"head": [[0, 0, 0, 0, 1]]}),
            dict(base, parts={"head": [[0, -1, 0, 1, 1]]}),
            dict(base, parts={"head": [[0, 0, 0, 1]]}),
            dict(base, palette="ff0000"),
            dict(base, size=[40, None]),
            dict(base, size=[40.5, 60]),
            dict(base, size=[0, 60]),
            dict(base, size=[40, -1]),
            dict(base, size=[True, 60]),
            dict(base, size=[40, 60, 1]),
        ]
        for table in cases:
            with self.subTest(table=table):
                with self.assertRaises(ValueError):
                    model_from_table(table)

    def test_size_defaults_to_command_extent(self) -> None:
        table = leg_table()
        del table["size"]
        model = model_from_table(table)
        self.assertEqual((model.width, model.height), (12, 40))

    def test_pivot_mapping_form(self) -> None:
        table = leg_table()
        table["pivots"]["leftHip"] = {"x": 11, "y": 21.5}
        self.assertEqual(tuple(model_from_table(table).pivots["leftHip"]), (11.0, 21.5))


if __name__ == "__main__":
    unittest.main()
