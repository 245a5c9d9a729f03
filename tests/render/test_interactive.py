"""Tests for the superseding preview renderer."""

import threading
from dataclasses import replace

import numpy as np

from matterhorn.render.backend import CpuRenderer, FrameRenderer, RenderBackend
from matterhorn.render.interactive import InteractiveRenderer


class GatedRenderer(FrameRenderer):
    """Blocks every tile until the gate opens."""

    backend = RenderBackend.CPU

    def __init__(self, gate: threading.Event):
        self.gate = gate
        self.tiles_rendered = 0

    def render_tile(self, tile, request):
        self.gate.wait(timeout=5)
        self.tiles_rendered += 1
        return np.full((tile.height, tile.width, 3), 7, dtype=np.uint8)


class TestInteractiveRenderer:
    def test_delivers_latest_frame(self, small_request):
        delivered = []
        with InteractiveRenderer(CpuRenderer(), on_frame=lambda g, f: delivered.append(g)) as preview:
            frame = preview.submit(small_request).result(timeout=30)
            assert frame.shape == (small_request.height, small_request.width, 3)
            assert preview.latest[0] == 1
            assert delivered == [1]

    def test_newer_request_supersedes_older(self, small_request):
        gate = threading.Event()
        renderer = GatedRenderer(gate)
        delivered = []
        request = replace(small_request, tile_size=8)
        with InteractiveRenderer(renderer, on_frame=lambda g, f: delivered.append(g)) as preview:
            first = preview.submit(request)
            second = preview.submit(request)
            gate.set()
            assert first.result(timeout=10) is None
            assert second.result(timeout=10) is not None
            assert preview.latest[0] == 2
        assert delivered == [2]

    def test_generation_counts_submissions(self, small_request):
        with InteractiveRenderer(CpuRenderer()) as preview:
            for _ in range(3):
                future = preview.submit(small_request)
            future.result(timeout=30)
            assert preview.generation == 3
            assert preview.is_current(3)
            assert not preview.is_current(2)
