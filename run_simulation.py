"""
End-to-end simulation of the pressure monitoring engine.

This script exercises:
1. Configuration loading and validation
2. Session lifecycle for several simulated bed sensors
3. Concurrent ingestion through the worker pool
4. Alert deduplication and acknowledgment
5. Time-range queries with downsampling

Run with: uv run python run_simulation.py
"""

import asyncio
from datetime import timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.sql import SqlPressureStore
from pressure_monitor.config import get_config, print_config_summary
from pressure_monitor.domain.errors import PressureMonitorError
from pressure_monitor.domain.models import utc_now
from pressure_monitor.log import configure_logging
from pressure_monitor.services.monitoring_engine import PressureMonitoringEngine
from pressure_monitor.services.sensor_simulator import (
    SensorFault,
    SimulatedBedSensor,
    SimulationScenario,
)

console = Console()

FRAMES_PER_SENSOR = 30


async def run_simulation() -> None:
    console.print(Panel("Bed Pressure Monitor - Simulation", style="bold blue"))

    config = get_config()
    configure_logging(config.logging)
    print_config_summary(config)

    store = SqlPressureStore(config.database)
    store.create_schema()
    engine = PressureMonitoringEngine(store, config)

    start = utc_now()
    sensors = [
        SimulatedBedSensor(sensor_id, config.limits, scenario, start=start, seed=seed)
        for seed, (sensor_id, scenario) in enumerate(
            [
                ("bed-101", SimulationScenario.NORMAL_SITTING),
                ("bed-102", SimulationScenario.PRESSURE_BUILDUP),
                ("bed-103", SimulationScenario.WEIGHT_SHIFTING),
            ],
            start=1,
        )
    ]
    sensors[2].inject_fault(SensorFault.SATURATION)

    console.print(Panel("Opening sessions", style="blue"))
    for index, sensor in enumerate(sensors):
        await engine.open_session(
            sensor.sensor_id,
            f"Night shift {sensor.sensor_id}",
            patient_id=f"patient-{index}",
            start_time=start,
        )
    console.print(f"Opened {len(sensors)} sessions", style="green")

    console.print(Panel("Ingesting readings", style="blue"))
    readings = [
        reading
        for _ in range(FRAMES_PER_SENSOR)
        for reading in (sensor.next_reading() for sensor in sensors)
    ]
    async with engine.worker_pool().running() as pool:
        results = await pool.ingest_many(readings)

    failures = [r.unwrap_err() for r in results if r.is_err()]
    console.print(
        f"Ingested {len(results) - len(failures)} readings, {len(failures)} rejected",
        style="green" if not failures else "yellow",
    )

    end = start + timedelta(seconds=FRAMES_PER_SENSOR + 1)
    summary = Table(title="Per-sensor summary")
    summary.add_column("Sensor", style="cyan")
    summary.add_column("Readings", justify="right")
    summary.add_column("Peak", justify="right")
    summary.add_column("Alerts", justify="right")
    summary.add_column("Downsampled (10s)", justify="right")

    for sensor in sensors:
        stored = await engine.query_readings(start, end, sensor_id=sensor.sensor_id)
        alerts = await engine.query_alerts(start, end, sensor_id=sensor.sensor_id)
        buckets = await engine.query_readings(
            start, end, sensor_id=sensor.sensor_id, bucket_width=timedelta(seconds=10)
        )
        peak = max((r.peak_pressure for r in stored), default=0.0)
        summary.add_row(
            sensor.sensor_id, str(len(stored)), f"{peak:.1f}", str(len(alerts)), str(len(buckets))
        )
    console.print(summary)

    console.print(Panel("Acknowledging alerts", style="blue"))
    open_alerts = await engine.query_alerts(
        start, end, sensor_id=sensors[1].sensor_id, acknowledged=False
    )
    for alert in open_alerts:
        await engine.acknowledge_alert(alert.id, "nurse.station.4")
        console.print(f"Acknowledged {alert.alert_type.value} alert #{alert.id}", style="green")
    if not open_alerts:
        console.print("No open alerts to acknowledge", style="yellow")

    for sensor in sensors:
        session = await engine.resolve_open_session(sensor.sensor_id)
        await engine.close_session(session.id, end)
    console.print("All sessions closed", style="green")

    store.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(run_simulation())
    except KeyboardInterrupt:
        console.print("\nSimulation stopped by user", style="yellow")
    except PressureMonitorError as e:
        console.print(f"\nSimulation failed: {e}", style="red")
