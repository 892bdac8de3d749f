"""Pydantic models for BMS readings, hourly series and advisory payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Fields folded into hourly buckets with a running mean
AVERAGED_FIELDS: tuple[str, ...] = (
    "soc",
    "voltage",
    "current",
    "remaining_capacity",
    "cycle_count",
    "power",
)

# Fields where the latest non-null value wins inside a bucket
LATEST_WINS_FIELDS: tuple[str, ...] = (
    "max_cell_voltage",
    "min_cell_voltage",
    "avg_cell_voltage",
    "cell_voltage_difference",
    "mos_charge_status",
    "mos_discharge_status",
    "balance_status",
)


class _CamelModel(BaseModel):
    """Immutable model serialised with camelCase keys (``batteryId``...)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class BatteryMeasurements(_CamelModel):
    """Measurements shared by every reading shape."""

    battery_id: str = Field(min_length=1, description="Battery identifier")
    soc: float = Field(description="State of Charge [%]")
    voltage: float = Field(description="Pack voltage [V]")
    current: float = Field(description="Current [A], positive = discharge")
    remaining_capacity: float = Field(description="Remaining capacity [Ah]")
    max_cell_voltage: float | None = Field(default=None, description="Max cell voltage [V]")
    min_cell_voltage: float | None = Field(default=None, description="Min cell voltage [V]")
    avg_cell_voltage: float | None = Field(default=None, description="Average cell voltage [V]")
    cell_voltage_difference: float | None = Field(
        default=None, description="Max - min cell voltage [V]"
    )
    cycle_count: int = Field(ge=0, description="Charge cycle count")
    power: float = Field(description="Power [kW]")
    mos_charge_status: str | None = Field(default=None, description="Charge MOS status")
    mos_discharge_status: str | None = Field(
        default=None, description="Discharge MOS status"
    )
    balance_status: str | None = Field(default=None, description="Balance status")


class Reading(BatteryMeasurements):
    """One snapshot extracted from a single BMS screenshot."""

    timestamp: str | None = Field(
        default=None, description="Time shown in the screenshot, 'HH:MM[:SS]'"
    )


class RawDataPoint(BatteryMeasurements):
    """A reading with its resolved absolute timestamp, one per upload."""

    timestamp: datetime

    @classmethod
    def from_reading(cls, reading: Reading, timestamp: datetime) -> "RawDataPoint":
        """Build a raw point from an extracted reading."""
        return cls(**reading.model_dump(exclude={"timestamp"}), timestamp=timestamp)


class AveragedDataPoint(BatteryMeasurements):
    """Hourly bucket holding the running mean of every folded reading."""

    timestamp: datetime
    cycle_count: float = Field(ge=0, description="Mean charge cycle count")
    upload_count: int = Field(default=1, ge=1)

    @classmethod
    def from_raw(cls, point: RawDataPoint) -> "AveragedDataPoint":
        """Open a new bucket from its first raw point."""
        return cls(**point.model_dump(), upload_count=1)


class BatterySeries(_CamelModel):
    """Raw and hourly-averaged series of one battery, both time-ascending."""

    raw: tuple[RawDataPoint, ...] = ()
    averaged: tuple[AveragedDataPoint, ...] = ()

    @property
    def latest(self) -> AveragedDataPoint | None:
        """Most recent hourly bucket."""
        return self.averaged[-1] if self.averaged else None


class Insight(_CamelModel):
    """Forward-looking dashboard insight."""

    title: str
    explanation: str
    icon: str = "Lightbulb"


class AlertSummary(_CamelModel):
    """Condensed view of several alerts."""

    summary: str
    recommendation: str = ""


class AdvisoryPayload(_CamelModel):
    """Reading-like payload sent to the health summary and alert services."""

    battery_id: str
    soc: float
    voltage: float
    current: float
    max_cell_voltage: float | None = None
    min_cell_voltage: float | None = None
    average_cell_voltage: float | None = None
    cycle_count: float

    @classmethod
    def from_point(
        cls, point: BatteryMeasurements, coerce_nulls: bool = False
    ) -> "AdvisoryPayload":
        """Build the payload from a data point.

        Args:
            point: Latest averaged (or raw) data point
            coerce_nulls: Send 0.0 instead of None for missing cell voltages

        Returns:
            Advisory payload
        """

        def _cell(value: float | None) -> float | None:
            if value is None and coerce_nulls:
                return 0.0
            return value

        return cls(
            battery_id=point.battery_id,
            soc=point.soc,
            voltage=point.voltage,
            current=point.current,
            max_cell_voltage=_cell(point.max_cell_voltage),
            min_cell_voltage=_cell(point.min_cell_voltage),
            average_cell_voltage=_cell(point.avg_cell_voltage),
            cycle_count=point.cycle_count,
        )
