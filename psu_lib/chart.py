"""Polyline paths for drawing sample histories."""

from dataclasses import dataclass
from typing import List, Sequence

# Histories whose peak is below this are drawn against this scale
MIN_SCALE = 1.0


@dataclass(frozen=True)
class PathVertex:
    """One vertex of a chart path.

    Attributes:
        op: "M" (move-to) for the first vertex, "L" (line-to) afterwards.
        x: Horizontal position, 0 at the oldest sample.
        y: Vertical position, 0 at the top.
    """

    op: str
    x: float
    y: float


def build_path(
    samples: Sequence[float], width: float = 100.0, height: float = 100.0
) -> List[PathVertex]:
    """Scale samples into an inverted polyline.

    Values are normalized by the largest sample (at least 1.0), so larger
    values draw higher. Samples are spread evenly across width.

    Args:
        samples: Values oldest to newest
        width: Output coordinate width
        height: Output coordinate height

    Returns:
        Vertex list starting with a move-to, empty for no samples
    """
    if not samples:
        return []

    scale = max(max(samples), MIN_SCALE)
    step = width / (len(samples) - 1) if len(samples) > 1 else 0.0

    vertices = []
    for index, value in enumerate(samples):
        op = "M" if index == 0 else "L"
        y = height - (value / scale) * height
        vertices.append(PathVertex(op=op, x=round(index * step, 3), y=round(y, 3)))
    return vertices


def path_to_svg(vertices: Sequence[PathVertex]) -> str:
    """Render vertices as SVG path commands, e.g. "M 0 100 L 1 95"."""
    return " ".join(f"{v.op} {v.x:g} {v.y:g}" for v in vertices)
