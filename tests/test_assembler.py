import os
import subprocess

import numpy as np
import pytest
from PIL import Image, ImageSequence

from dex98.config import ArtPaths
from dex98.layout import gallery_tile_size, render_gallery_art
from dex98.reconstruct import assembler
from dex98.reconstruct.assembler import (
    AnimationFrame, Composer, build_animation_plan, collapse_duplicates, file_signature,
    recompress_gif, reduce_palette
)
from dex98.reconstruct.extractor import GRID_HEIGHT, GRID_WIDTH, CanonicalBitmap
from dex98.reconstruct.metadata import ArchivalEncoder, PngOptimizer, read_png_text
from dex98.store import MemoryArtifactStore

from conftest import pattern


def solid(value):
    return Image.new('RGB', (96, 102), (value, value, value))


def put_subject(store, index, seeds):
    for frame, seed in enumerate(seeds):
        bitmap = CanonicalBitmap(pattern(seed))
        store.put(index, frame, bitmap, render_gallery_art(bitmap))


def durations(path):
    with Image.open(path) as gif:
        return [frame.info['duration'] for frame in ImageSequence.Iterator(gif)]


class TestAnimationPlan:
    def test_plan_before_collapse(self):
        plan = build_animation_plan(solid(0), solid(1), solid(2))
        assert len(plan) == 13
        assert plan[0].delay_ms == 2000
        assert all(f.delay_ms == 400 for f in plan[1:])

    def test_distinct_frames(self):
        frames = collapse_duplicates(build_animation_plan(solid(0), solid(1), solid(2)))
        assert [f.label for f in frames] == [
            'rest', 'pose', 'rest', 'pose',
            'rest', 'attack', 'rest', 'attack',
            'rest', 'pose', 'rest', 'pose',
        ]
        assert frames[0].delay_ms == 2400
        assert sum(f.delay_ms for f in frames) == 2000 + 12 * 400

    def test_identical_pose_collapses(self):
        rest = solid(0)
        frames = collapse_duplicates(build_animation_plan(rest, rest.copy(), solid(2)))
        assert [f.label for f in frames] == ['rest', 'attack', 'rest', 'attack', 'rest']
        assert [f.delay_ms for f in frames] == [4000, 400, 400, 400, 1600]

    def test_collapse_keeps_input(self):
        frames = [AnimationFrame(solid(0), 100, 'a'), AnimationFrame(solid(0), 100, 'b')]
        collapsed = collapse_duplicates(frames)
        assert len(collapsed) == 1
        assert collapsed[0].delay_ms == 200
        assert frames[0].delay_ms == 100

    def test_shared_palette(self):
        reduced = reduce_palette([solid(0), solid(255)], colors=4)
        assert all(im.mode == 'P' for im in reduced)
        assert reduced[0].getpalette() == reduced[1].getpalette()


class TestComposer:
    def setup_method(self):
        self.store = MemoryArtifactStore()

    def make_composer(self, tmp_path):
        paths = ArtPaths(str(tmp_path))
        encoder = ArchivalEncoder(paths, PngOptimizer(use_oxipng=False))
        return Composer(self.store, paths, encoder, verbose=False), paths

    def test_incomplete_subject_is_not_composed(self, tmp_path):
        composer, paths = self.make_composer(tmp_path)
        put_subject(self.store, 6, [1, 2])
        assert composer.compose(6, 'Dragon') is None
        assert not os.path.exists(paths.sheet('006-Dragon'))
        assert not os.path.exists(paths.animation('006-Dragon'))

    def test_sheet_and_animation(self, tmp_path):
        composer, paths = self.make_composer(tmp_path)
        put_subject(self.store, 6, [1, 2, 3])

        result = composer.compose(6, 'Dragon')

        assert result.sheet_path == paths.sheet('006-Dragon')
        with Image.open(result.sheet_path) as sheet:
            assert sheet.size == (90, 32)
            arr = np.array(sheet.convert('L'))
        for frame in range(3):
            expected = self.store.load_bitmap(6, frame).to_array()
            assert np.array_equal(arr[:, frame * 30:(frame + 1) * 30], expected)
        assert read_png_text(result.sheet_path)['Title'] == '#006 Dragon - dex98.com'

        assert len(result.frame_labels) == 12
        timings = durations(result.animation_path)
        assert len(timings) == 12
        assert timings[0] == 2400
        with Image.open(result.animation_path) as gif:
            assert gif.info.get('loop') == 0

    def test_duplicate_pose_animation(self, tmp_path):
        composer, _ = self.make_composer(tmp_path)
        put_subject(self.store, 6, [1, 1, 3])
        result = composer.compose(6, 'Dragon')
        assert result.frame_labels == ['rest', 'attack', 'rest', 'attack', 'rest']
        assert durations(result.animation_path) == [4000, 400, 400, 400, 1600]

    def test_master_gallery(self, tmp_path, table):
        composer, paths = self.make_composer(tmp_path)
        assert composer.compose_master(table, gallery_tile_size(GRID_WIDTH, GRID_HEIGHT)) is None

        put_subject(self.store, 1, [1, 2, 3])
        put_subject(self.store, 150, [4, 5, 6])

        result = composer.compose_master(table, gallery_tile_size(GRID_WIDTH, GRID_HEIGHT))

        assert result.sheet_path == paths.master_sheet(0)
        for frame in range(3):
            assert os.path.isfile(paths.master_sheet(frame))
        with Image.open(paths.master_sheet(1)) as master:
            master = master.convert('RGB')
        assert master.size == (1440, 1122)

        placeholder = np.array(master.crop((0, 0, 96, 102)))
        subject = np.array(master.crop((96, 0, 192, 102)))
        footer_left = np.array(master.crop((0, 1020, 96, 1122)))
        assert np.array_equal(subject, np.array(self.store.load_gallery(1, 1)))
        assert np.array_equal(footer_left, np.array(self.store.load_gallery(150, 1)))
        assert len(np.unique(placeholder.reshape(-1, 3), axis=0)) == 2

        assert os.path.isfile(paths.master_animation())
        assert result.frame_labels[0] == 'rest'

    def test_store_missing_frame(self):
        with pytest.raises(KeyError):
            self.store.load_bitmap(1, 0)


class TestRecompressGif:
    def setup_method(self):
        self.commands = []

    def fake_gifsicle(self, during=None):
        """Stand-in for gifsicle that copies its input and records the call."""
        def _run(cmd, timeout=300):
            self.commands.append(cmd)
            source, target = cmd[-1], cmd[cmd.index('-o') + 1]
            with open(source, 'rb') as handle:
                data = handle.read()
            with open(target, 'wb') as handle:
                handle.write(data + b'-optimized')
            if during is not None:
                during(source)
            return subprocess.CompletedProcess(cmd, 0, stdout='', stderr='')
        return _run

    def write(self, tmp_path, data=b'animation'):
        path = tmp_path / 'anim.gif'
        path.write_bytes(data)
        return str(path)

    def test_replaces_unchanged_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(assembler, 'run_tool', self.fake_gifsicle())
        path = self.write(tmp_path)
        assert recompress_gif(path, file_signature(path))
        assert open(path, 'rb').read() == b'animation-optimized'
        assert not os.path.exists(path + '.opt.gif')

    def test_skips_file_rewritten_before_start(self, tmp_path, monkeypatch):
        monkeypatch.setattr(assembler, 'run_tool', self.fake_gifsicle())
        path = self.write(tmp_path)
        signature = file_signature(path)
        self.write(tmp_path, b'newer animation')
        assert not recompress_gif(path, signature)
        assert open(path, 'rb').read() == b'newer animation'
        assert self.commands == []

    def test_discards_result_when_rewritten_while_running(self, tmp_path, monkeypatch):
        def rewrite(source):
            with open(source, 'wb') as handle:
                handle.write(b'newer animation')
        monkeypatch.setattr(assembler, 'run_tool', self.fake_gifsicle(during=rewrite))
        path = self.write(tmp_path)
        assert not recompress_gif(path, file_signature(path))
        assert open(path, 'rb').read() == b'newer animation'
        assert not os.path.exists(path + '.opt.gif')

    def test_failure_removes_partial_output(self, tmp_path, monkeypatch):
        def fail(cmd, timeout=300):
            open(cmd[cmd.index('-o') + 1], 'wb').close()
            raise subprocess.CalledProcessError(1, cmd)
        monkeypatch.setattr(assembler, 'run_tool', fail)
        path = self.write(tmp_path)
        with pytest.raises(subprocess.CalledProcessError):
            recompress_gif(path)
        assert open(path, 'rb').read() == b'animation'
        assert not os.path.exists(path + '.opt.gif')
