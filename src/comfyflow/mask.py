"""
Editor de máscaras

Mantiene una máscara alfa pintable alineada con la imagen de referencia y
genera los dos artefactos que se envían al backend:
- Copia directa de la imagen de referencia
- Máscara monocroma invertida (blanco = conservar, negro = regenerar)

La capa compuesta (imagen + máscara) sólo se usa como vista previa.
"""

import logging
import math
from enum import Enum
from io import BytesIO

from PIL import Image

from comfyflow.config import DEFAULT_BRUSH_SIZE, MASK_OVERLAY_OPACITY
from comfyflow.errors import MaskSurfaceError

logger = logging.getLogger(__name__)

STROKE_STEP = 2  # raster units between two stamped discs
PAINT = (255, 255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)


class DrawingTool(str, Enum):
    BRUSH = "brush"
    ERASER = "eraser"


class MaskBuffer:
    """RGBA pixels stored in a flat byte array indexed by ``(y * width + x) * 4``."""

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid mask size {width}x{height}")
        self.width = width
        self.height = height
        self.data = bytearray(width * height * 4)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def _index(self, x: int, y: int) -> int:
        return (y * self.width + x) * 4

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int) -> tuple[int, int, int, int]:
        if not self.in_bounds(x, y):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height}")
        i = self._index(x, y)
        return tuple(self.data[i : i + 4])

    def set(self, x: int, y: int, rgba: tuple[int, int, int, int]) -> bool:
        """Write one pixel. Out of bounds writes are dropped and return False."""
        if not self.in_bounds(x, y):
            return False
        i = self._index(x, y)
        self.data[i : i + 4] = bytes(rgba)
        return True

    def alpha(self, x: int, y: int) -> int:
        return self.get(x, y)[3]

    def fill_span(self, y: int, x0: int, x1: int, rgba: tuple[int, int, int, int]):
        """Overwrite the inclusive run ``x0..x1`` of row ``y``, clipped to the buffer."""
        if y < 0 or y >= self.height:
            return
        x0 = max(x0, 0)
        x1 = min(x1, self.width - 1)
        if x0 > x1:
            return
        start = self._index(x0, y)
        end = self._index(x1, y) + 4
        self.data[start:end] = bytes(rgba) * (x1 - x0 + 1)

    def stamp_disc(self, cx: float, cy: float, radius: float, rgba: tuple[int, int, int, int]):
        # Row by row: x belongs to the disc iff (x - cx)^2 + (y - cy)^2 <= r^2.
        r2 = radius * radius
        for y in range(math.floor(cy - radius), math.floor(cy + radius) + 1):
            dy2 = (y - cy) ** 2
            if dy2 > r2:
                continue
            dx = math.sqrt(r2 - dy2)
            self.fill_span(y, math.ceil(cx - dx), math.floor(cx + dx), rgba)

    def clear(self):
        self.data[:] = bytes(len(self.data))

    def alpha_bytes(self) -> bytes:
        return bytes(self.data[3::4])

    def has_paint(self) -> bool:
        return any(self.data[3::4])


class MaskSurface:
    """
    Paintable alpha mask bound to a source image.

    Strokes are stateful: ``begin_stroke`` stamps the first disc and every
    ``continue_stroke`` fills the segment from the previous point so fast
    pointer motion still paints a continuous band.
    """

    def __init__(
        self,
        brush_size: int = DEFAULT_BRUSH_SIZE,
        tool: DrawingTool = DrawingTool.BRUSH,
        overlay_opacity: float = MASK_OVERLAY_OPACITY,
    ):
        self.brush_size = brush_size
        self.tool = tool
        self.overlay_opacity = overlay_opacity
        self._source: Image.Image | None = None
        self._buffer: MaskBuffer | None = None
        self._last_point: tuple[float, float] | None = None

    @property
    def brush_size(self) -> int:
        return self._brush_size

    @brush_size.setter
    def brush_size(self, value: int):
        if value <= 0:
            raise ValueError("brush_size must be positive")
        self._brush_size = value

    @property
    def is_bound(self) -> bool:
        return self._buffer is not None

    @property
    def size(self) -> tuple[int, int]:
        return self._require_buffer().size

    @property
    def buffer(self) -> MaskBuffer:
        return self._require_buffer()

    @property
    def source(self) -> Image.Image:
        self._require_buffer()
        return self._source

    @property
    def is_drawing(self) -> bool:
        return self._last_point is not None

    @property
    def has_mask(self) -> bool:
        return self.is_bound and self._buffer.has_paint()

    def _require_buffer(self) -> MaskBuffer:
        if self._buffer is None:
            raise MaskSurfaceError("No source image bound to the mask surface")
        return self._buffer

    def bind(self, image: Image.Image):
        """Bind a new source image; the previous mask is discarded."""
        self._source = image.convert("RGBA")
        self._buffer = MaskBuffer(*self._source.size)
        self._last_point = None
        logger.debug("Mask surface bound to %sx%s image", *self._source.size)

    def _stamp(self, point: tuple[float, float]):
        color = PAINT if self.tool == DrawingTool.BRUSH else TRANSPARENT
        self._buffer.stamp_disc(point[0], point[1], self.brush_size, color)

    def begin_stroke(self, point: tuple[float, float]):
        self._require_buffer()
        self._last_point = None
        self._stamp(point)
        self._last_point = point

    def continue_stroke(self, point: tuple[float, float]):
        self._require_buffer()
        if self._last_point is None:
            self.begin_stroke(point)
            return

        x0, y0 = self._last_point
        x1, y1 = point
        distance = math.hypot(x1 - x0, y1 - y0)
        steps = max(1, math.floor(distance / STROKE_STEP))
        for i in range(steps + 1):
            t = i / steps
            self._stamp((x0 + (x1 - x0) * t, y0 + (y1 - y0) * t))
        self._last_point = point

    def end_stroke(self):
        self._last_point = None

    def replay(self, strokes) -> None:
        """Paint recorded strokes (objects with ``tool``, ``brush_size`` and ``points``)."""
        for stroke in strokes:
            self.tool = DrawingTool(stroke.tool)
            self.brush_size = stroke.brush_size
            first, *rest = stroke.points
            self.begin_stroke(tuple(first))
            for point in rest:
                self.continue_stroke(tuple(point))
            self.end_stroke()

    def clear(self):
        self._require_buffer().clear()
        self._last_point = None

    def to_monochrome_mask(self) -> Image.Image:
        """White where nothing was painted, black where paint has alpha > 0."""
        buffer = self._require_buffer()
        alpha = Image.frombytes("L", buffer.size, buffer.alpha_bytes())
        return alpha.point(lambda a: 255 if a == 0 else 0)

    def to_composite_layer(self) -> Image.Image:
        buffer = self._require_buffer()
        overlay = Image.frombytes("RGBA", buffer.size, bytes(buffer.data))
        opacity = self.overlay_opacity
        overlay.putalpha(overlay.getchannel("A").point(lambda a: round(a * opacity)))
        return Image.alpha_composite(self._source, overlay)

    def export_source(self) -> bytes:
        return _to_png(self.source)

    def export_mask(self) -> bytes:
        return _to_png(self.to_monochrome_mask())


def _to_png(image: Image.Image) -> bytes:
    output_buffer = BytesIO()
    image.save(output_buffer, format="PNG")
    return output_buffer.getvalue()
