"""
GPU backend: the same frame contract evaluated in a fragment shader.

Runs on a headless moderngl context. Arithmetic is single precision, so
output matches the CPU backend visually rather than bit for bit.
"""

import logging
import math

import numpy as np

from matterhorn.core.kernel import FractalKind
from matterhorn.core.palette import build_lut, to_uint8
from matterhorn.core.traps import TrapKind
from matterhorn.errors import RenderError
from matterhorn.render.backend import FrameRenderer, RenderBackend, RenderRequest
from matterhorn.render.tiles import Tile

logger = logging.getLogger(__name__)

VERTEX_SHADER = """
#version 330
void main() {
    vec2 positions[3] = vec2[](vec2(-1.0, -3.0), vec2(-1.0, 1.0), vec2(3.0, 1.0));
    gl_Position = vec4(positions[gl_VertexID], 0.0, 1.0);
}
"""

FRAGMENT_SHADER = """
#version 330
uniform vec2 full_size;
uniform vec2 tile_offset;
uniform float tile_height;
uniform vec2 center;
uniform float scale;
uniform float rotation;
uniform int fractal_kind;
uniform int max_iter;
uniform float escape_radius;
uniform float power;
uniform vec2 julia_c;
uniform int trap_kind;
uniform int trap_blend;
uniform vec2 trap_center;
uniform float trap_radius;
uniform float trap_arm;
uniform float trap_softness;
uniform vec3 trap_color;
uniform int cycle_enabled;
uniform float phase;
uniform vec3 interior_color;
uniform float exposure;
uniform float gamma;
uniform int lut_size;
uniform sampler2D palette_tex;

out vec3 frag_color;

vec2 polar_pow(vec2 z, float p) {
    float r = sqrt(z.x * z.x + z.y * z.y);
    float theta = atan(z.y, z.x);
    float rp = pow(r, p);
    return vec2(rp * cos(theta * p), rp * sin(theta * p));
}

float trap_distance(vec2 z) {
    vec2 d = z - trap_center;
    if (trap_kind == 1) {
        return length(d);
    }
    if (trap_kind == 2) {
        return abs(length(d) - trap_radius);
    }
    return min(min(abs(d.x), abs(d.y)), trap_arm);
}

vec3 palette_sample(float v) {
    float pos = cycle_enabled == 1 ? fract(v + phase) : clamp(v, 0.0, 1.0);
    float u = (pos * float(lut_size - 1) + 0.5) / float(lut_size);
    return texture(palette_tex, vec2(u, 0.5)).rgb;
}

void main() {
    vec2 pixel = vec2(
        tile_offset.x + floor(gl_FragCoord.x),
        tile_offset.y + (tile_height - 1.0 - floor(gl_FragCoord.y))
    );
    vec2 screen = pixel - full_size * 0.5;
    float cr = cos(rotation);
    float sr = sin(rotation);
    vec2 world = center + vec2(screen.x * cr - screen.y * sr, screen.x * sr + screen.y * cr) * scale;

    vec2 z = vec2(0.0);
    vec2 c = world;
    if (fractal_kind == 1) {
        z = world;
        c = julia_c;
    }

    float r2 = escape_radius * escape_radius;
    float trap_min = 1e30;
    bool trapped = false;
    int count = 0;
    for (int i = 0; i < max_iter; ++i) {
        if (dot(z, z) > r2) {
            break;
        }
        if (fractal_kind == 2) {
            z = abs(z);
        }
        if (power == 2.0) {
            z = vec2(z.x * z.x - z.y * z.y, 2.0 * z.x * z.y) + c;
        } else {
            z = polar_pow(z, power) + c;
        }
        count += 1;
        if (trap_kind != 0) {
            trap_min = min(trap_min, trap_distance(z));
            trapped = true;
        }
    }

    bool escaped = dot(z, z) > r2;
    float strength = trapped ? clamp(exp(-trap_min * trap_softness), 0.0, 1.0) : 0.0;
    vec3 color;
    if (!escaped) {
        color = interior_color;
    } else if (trap_kind != 0 && trap_blend == 0) {
        color = palette_sample(strength);
    } else {
        float nu = 0.0;
        if (power > 1.0) {
            float ratio = log(sqrt(dot(z, z))) / log(escape_radius);
            nu = ratio > 0.0 ? clamp(log(ratio) / log(power), 0.0, 1.0) : 0.0;
        }
        float smooth_count = float(count) + (power > 1.0 ? 1.0 - nu : 0.0);
        color = palette_sample(clamp(smooth_count / float(max_iter), 0.0, 1.0));
    }

    color = pow(clamp(1.0 - exp(-color * exposure), 0.0, 1.0), vec3(1.0 / gamma));
    if (escaped && trap_kind != 0 && trap_blend == 1) {
        color = color + (trap_color - color) * strength;
    }
    frag_color = color;
}
"""

_FRACTAL_CODES = {
    FractalKind.MANDELBROT: 0,
    FractalKind.JULIA: 1,
    FractalKind.BURNING_SHIP: 2,
    FractalKind.MULTIBROT: 3,
}

_TRAP_CODES = {
    TrapKind.NONE: 0,
    TrapKind.POINT: 1,
    TrapKind.CIRCLE: 2,
    TrapKind.CROSS: 3,
}


class GpuRenderer(FrameRenderer):
    """
    Fragment-shader renderer on a standalone OpenGL context.

    Tiles are drawn one after another on the single context.
    """

    backend = RenderBackend.GPU

    def __init__(self, lut_size: int = 2048):
        try:
            import moderngl
        except ImportError as exc:
            raise RenderError(
                "GPU backend needs moderngl (pip install 'matterhorn[gpu]')"
            ) from exc

        self._moderngl = moderngl
        self.lut_size = lut_size
        try:
            self._ctx = moderngl.create_standalone_context()
            self._program = self._ctx.program(
                vertex_shader=VERTEX_SHADER,
                fragment_shader=FRAGMENT_SHADER,
            )
            self._vao = self._ctx.vertex_array(self._program, [])
        except Exception as exc:
            raise RenderError(f"could not initialise OpenGL: {exc}") from exc
        logger.info("GPU renderer ready: %s", self._ctx.info.get("GL_RENDERER", "unknown"))

    def _set(self, name: str, value):
        member = self._program.get(name, None)
        if member is not None:
            member.value = value

    def render_tile(self, tile: Tile, request: RenderRequest) -> np.ndarray:
        params = request.params
        palette = request.palette
        trap = request.trap
        camera = request.camera
        moderngl = self._moderngl

        with self._ctx:
            lut = build_lut(palette, self.lut_size)
            texture = self._ctx.texture((self.lut_size, 1), 3, lut.tobytes(), dtype="f4")
            texture.filter = (moderngl.LINEAR, moderngl.LINEAR)
            texture.repeat_x = False
            texture.repeat_y = False
            target = self._ctx.renderbuffer((tile.width, tile.height), components=3, dtype="f4")
            fbo = self._ctx.framebuffer(color_attachments=[target])
            try:
                texture.use(location=0)
                self._set("palette_tex", 0)
                self._set("full_size", (float(request.width), float(request.height)))
                self._set("tile_offset", (float(tile.x), float(tile.y)))
                self._set("tile_height", float(tile.height))
                self._set("center", (camera.center.real, camera.center.imag))
                self._set("scale", camera.scale)
                self._set("rotation", camera.rotation)
                self._set("fractal_kind", _FRACTAL_CODES[params.kind])
                self._set("max_iter", params.max_iterations)
                self._set("escape_radius", params.escape_radius)
                self._set("power", params.effective_power)
                self._set("julia_c", (params.julia_c.real, params.julia_c.imag))
                self._set("trap_kind", _TRAP_CODES[trap.kind])
                self._set("trap_blend", 0 if trap.color is None else 1)
                self._set("trap_center", (trap.center.real, trap.center.imag))
                self._set("trap_radius", trap.radius)
                self._set("trap_arm", trap.arm_width)
                self._set("trap_softness", trap.softness)
                self._set("trap_color", tuple(trap.color or (0.0, 0.0, 0.0)))
                self._set("cycle_enabled", 1 if palette.cycle_enabled else 0)
                self._set("phase", math.fmod(palette.cycle_phase + request.palette_phase, 1.0))
                self._set("interior_color", tuple(palette.interior_rgb()))
                self._set("exposure", params.exposure)
                self._set("gamma", params.gamma)
                self._set("lut_size", self.lut_size)

                fbo.use()
                self._ctx.viewport = (0, 0, tile.width, tile.height)
                self._vao.render(mode=moderngl.TRIANGLES, vertices=3)
                raw = fbo.read(components=3, dtype="f4")
            finally:
                fbo.release()
                target.release()
                texture.release()

        pixels = np.frombuffer(raw, dtype=np.float32).reshape(tile.height, tile.width, 3)
        # OpenGL rows run bottom-up
        return to_uint8(np.flipud(pixels))

    def close(self):
        if self._ctx is not None:
            self._vao.release()
            self._program.release()
            self._ctx.release()
            self._ctx = None
