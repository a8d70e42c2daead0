"""
Metric derivation from raw pressure frames.

Pure functions only: no I/O, no clock, deterministic for a given matrix.
The deriver validates the frame first so that an invalid matrix never reaches
the store.
"""

import math
from collections.abc import Sequence
from numbers import Real

from pressure_monitor.config import EngineConfig
from pressure_monitor.domain.errors import InvalidMatrix
from pressure_monitor.domain.models import DerivedMetrics, PressureMatrix


def validate_matrix(
    matrix: Sequence[Sequence[float]], expected_shape: tuple[int, int] | None = None
) -> PressureMatrix:
    """Check the frame is a non-empty rectangular grid of finite, non-negative numbers.

    Returns a normalised copy as a list of float rows.
    """
    if isinstance(matrix, (str, bytes)) or not isinstance(matrix, Sequence) or len(matrix) == 0:
        raise InvalidMatrix("matrix must contain at least one row", field="matrix")

    width: int | None = None
    rows: PressureMatrix = []
    for row_index, row in enumerate(matrix):
        if isinstance(row, (str, bytes)) or not isinstance(row, Sequence) or len(row) == 0:
            raise InvalidMatrix("matrix rows must be non-empty sequences", row=row_index)
        if width is None:
            width = len(row)
        elif len(row) != width:
            raise InvalidMatrix(
                "matrix rows must all have the same length",
                row=row_index,
                expected=width,
                actual=len(row),
            )

        values: list[float] = []
        for col_index, cell in enumerate(row):
            if isinstance(cell, bool) or not isinstance(cell, Real):
                raise InvalidMatrix("matrix cells must be numbers", row=row_index, col=col_index)
            value = float(cell)
            if not math.isfinite(value):
                raise InvalidMatrix("matrix cells must be finite", row=row_index, col=col_index)
            if value < 0:
                raise InvalidMatrix(
                    "matrix cells must be non-negative", row=row_index, col=col_index, value=value
                )
            values.append(value)
        rows.append(values)

    if expected_shape is not None and (len(rows), width) != tuple(expected_shape):
        raise InvalidMatrix(
            "matrix does not match the sensor dimensions",
            expected=tuple(expected_shape),
            actual=(len(rows), width),
        )
    return rows


def peak_pressure(matrix: PressureMatrix) -> float:
    return max(max(row) for row in matrix)


def _percentage(count: int, total: int) -> float:
    return min(100.0, max(0.0, round(count / total * 100, 2)))


def contact_area_percentage(matrix: PressureMatrix, contact_threshold: float = 0.0) -> float:
    """Share of cells strictly above the contact threshold, 0-100 with 2 decimals."""
    total = sum(len(row) for row in matrix)
    contact = sum(1 for row in matrix for value in row if value > contact_threshold)
    return _percentage(contact, total)


def saturation_percentage(matrix: PressureMatrix, saturation_value: float) -> float:
    """Share of cells at or above the sensor's saturation value."""
    total = sum(len(row) for row in matrix)
    saturated = sum(1 for row in matrix for value in row if value >= saturation_value)
    return _percentage(saturated, total)


def peak_pressure_index(
    matrix: PressureMatrix, threshold: float = 50.0, min_cluster_size: int = 10
) -> float:
    """Highest cell inside any 4-connected cluster of at least ``min_cluster_size``
    cells above ``threshold``.

    Isolated spikes smaller than the cluster size are ignored; 0 when no cluster
    qualifies.
    """
    height = len(matrix)
    width = len(matrix[0])
    visited = [[False] * width for _ in range(height)]
    best = 0.0

    for start_row in range(height):
        for start_col in range(width):
            if visited[start_row][start_col] or matrix[start_row][start_col] <= threshold:
                continue

            # Iterative flood fill
            stack = [(start_row, start_col)]
            size = 0
            cluster_max = 0.0
            while stack:
                row, col = stack.pop()
                if not (0 <= row < height and 0 <= col < width):
                    continue
                if visited[row][col] or matrix[row][col] <= threshold:
                    continue
                visited[row][col] = True
                size += 1
                cluster_max = max(cluster_max, matrix[row][col])
                stack.extend(((row - 1, col), (row + 1, col), (row, col - 1), (row, col + 1)))

            if size >= min_cluster_size:
                best = max(best, cluster_max)

    return best


def parse_matrix_csv(text: str, expected_shape: tuple[int, int] | None = None) -> PressureMatrix:
    """Parse a comma-separated frame (one matrix row per line) and validate it."""
    rows: list[list[float]] = []
    for line_number, line in enumerate(text.strip().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            rows.append([float(cell) for cell in line.split(",")])
        except ValueError as e:
            raise InvalidMatrix("matrix CSV contains a non-numeric cell", line=line_number) from e
    return validate_matrix(rows, expected_shape)


class MetricDeriver:
    """Applies the configured derivation parameters to incoming frames."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def derive(self, matrix: Sequence[Sequence[float]]) -> tuple[PressureMatrix, DerivedMetrics]:
        """Validate a frame and compute its metrics.

        Raises:
            InvalidMatrix: empty, ragged, non-numeric, negative or wrongly shaped frame.
        """
        frame = validate_matrix(matrix, self.config.matrix_shape)
        metrics = DerivedMetrics(
            peak_pressure=peak_pressure(frame),
            contact_area_percentage=contact_area_percentage(frame, self.config.contact_threshold),
            peak_pressure_index=peak_pressure_index(
                frame, self.config.ppi_threshold, self.config.ppi_min_cluster_size
            ),
            saturation_percentage=saturation_percentage(frame, self.config.saturation_value),
        )
        return frame, metrics
