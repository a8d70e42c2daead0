"""
Simulated bed pressure sensor.

In production: frames arrive from the sensor mat's gateway.
Here: a seated body outline (thighs plus two ischial hot spots) with noise,
optional pressure build-up and injectable faults. Seeded for repeatable demos
and tests.
"""

import random
from collections.abc import Iterator
from datetime import datetime, timedelta
from enum import Enum, Flag, auto

import structlog

from pressure_monitor.config import PressureLimitsConfig
from pressure_monitor.domain.models import IncomingReading, PressureMatrix, utc_now

logger = structlog.get_logger(__name__)

MATRIX_SIZE = 32

# Regions as (row_start, row_end, col_start, col_end), end exclusive
_THIGHS = (8, 25, 6, 26)
_ISCHIAL_LEFT = (12, 20, 8, 12)
_ISCHIAL_RIGHT = (12, 20, 20, 24)

NOISE_FACTOR = 0.15
BUILDUP_PER_FRAME = 2.5


class SimulationScenario(str, Enum):
    NORMAL_SITTING = "normal_sitting"
    PRESSURE_BUILDUP = "pressure_buildup"
    WEIGHT_SHIFTING = "weight_shifting"
    STATIC = "static"


class SensorFault(Flag):
    NONE = 0
    DEAD_PIXELS = auto()
    DISCONNECTED = auto()
    SATURATION = auto()


class SimulatedBedSensor:
    """
    Generates pressure frames for one sensor id.

    Design principles: no wall-clock dependency (timestamps advance by the frame
    interval from ``start``), and faults are explicit state so a test can assert
    on exactly what it injected.
    """

    def __init__(
        self,
        sensor_id: str,
        limits: PressureLimitsConfig | None = None,
        scenario: SimulationScenario = SimulationScenario.NORMAL_SITTING,
        frames_per_second: float = 1.0,
        start: datetime | None = None,
        seed: int | None = None,
    ) -> None:
        if frames_per_second <= 0 or frames_per_second > 60:
            raise ValueError("frames_per_second must be in (0, 60]")

        self.sensor_id = sensor_id
        self.limits = limits or PressureLimitsConfig()
        self.scenario = scenario
        self.interval = timedelta(seconds=1.0 / frames_per_second)
        self.faults = SensorFault.NONE
        self.frame_number = 0
        self._start = start or utc_now()
        self._random = random.Random(seed)
        self.logger = logger.bind(component="sensor_simulator", sensor_id=sensor_id)

    @property
    def _span(self) -> int:
        return self.limits.max_value - self.limits.min_value

    def set_scenario(self, scenario: SimulationScenario) -> None:
        self.scenario = scenario
        self.frame_number = 0
        self.logger.debug("scenario_set", scenario=scenario.value)

    def inject_fault(self, fault: SensorFault) -> None:
        self.faults |= fault
        self.logger.warning("fault_injected", fault=str(fault))

    def clear_faults(self) -> None:
        self.faults = SensorFault.NONE
        self.logger.info("faults_cleared")

    def next_reading(self) -> IncomingReading:
        timestamp = self._start + self.interval * self.frame_number
        matrix = self._apply_faults(self._generate())
        self.frame_number += 1
        return IncomingReading(sensor_id=self.sensor_id, timestamp=timestamp, matrix=matrix)

    def stream(self, count: int) -> Iterator[IncomingReading]:
        for _ in range(count):
            yield self.next_reading()

    def _generate(self) -> PressureMatrix:
        base = self.limits.min_value + self._span * 0.12
        thigh_peak = self.limits.min_value + self._span * 0.31
        ischial_peak = self.limits.min_value + self._span * 0.71

        buildup = 0.0
        shift = 0
        if self.scenario is SimulationScenario.PRESSURE_BUILDUP:
            buildup = BUILDUP_PER_FRAME * self.frame_number
        elif self.scenario is SimulationScenario.WEIGHT_SHIFTING:
            # Lean left then right on a ten-frame cycle
            shift = -2 if (self.frame_number // 10) % 2 == 0 else 2

        matrix = [[0.0] * MATRIX_SIZE for _ in range(MATRIX_SIZE)]
        self._fill(matrix, _THIGHS, base, thigh_peak, 0.0, 0)
        self._fill(matrix, _ISCHIAL_LEFT, thigh_peak, ischial_peak, buildup, shift)
        self._fill(matrix, _ISCHIAL_RIGHT, thigh_peak, ischial_peak, buildup, shift)
        return matrix

    def _fill(
        self,
        matrix: PressureMatrix,
        region: tuple[int, int, int, int],
        low: float,
        high: float,
        extra: float,
        col_shift: int,
    ) -> None:
        row_start, row_end, col_start, col_end = region
        ceiling = float(self.limits.max_value)
        for row in range(row_start, row_end):
            for col in range(col_start + col_shift, col_end + col_shift):
                if not 0 <= col < MATRIX_SIZE:
                    continue
                value = self._random.uniform(low, high) + extra
                if self.scenario is not SimulationScenario.STATIC:
                    value *= 1.0 + self._random.uniform(-NOISE_FACTOR, NOISE_FACTOR)
                matrix[row][col] = round(min(max(value, 0.0), ceiling), 1)

    def _apply_faults(self, matrix: PressureMatrix) -> PressureMatrix:
        if SensorFault.DISCONNECTED in self.faults:
            return [[0.0] * MATRIX_SIZE for _ in range(MATRIX_SIZE)]
        if SensorFault.SATURATION in self.faults:
            ceiling = float(self.limits.max_value)
            return [[ceiling] * MATRIX_SIZE for _ in range(MATRIX_SIZE)]
        if SensorFault.DEAD_PIXELS in self.faults:
            for row in matrix:
                for col in range(MATRIX_SIZE):
                    if self._random.random() < 0.05:
                        row[col] = 0.0
        return matrix
