"""Data contracts for real-time measurements and the protocols observers implement"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class RealTimeMeasurement:
    """
    One live measurement of a home, as pushed by the Tibber Pulse or Watty.

    Attributes:
        timestamp: When the measurement occurred.
        power: Consumption at the moment (W).
        power_reactive: Reactive consumption (Q+) at the moment (kVAr).
        power_production: Net production (A-) at the moment (W).
        power_production_reactive: Net reactive production (Q-) at the moment (kVAr).
        accumulated_consumption: Energy consumed since midnight (kWh).
        accumulated_consumption_last_hour: Energy consumed since the start of the hour (kWh).
        accumulated_production: Net energy produced since midnight (kWh).
        accumulated_production_last_hour: Net energy produced since the start of the hour (kWh).
        accumulated_cost: Cost since midnight; requires an active power deal.
        accumulated_reward: Reward since midnight; requires an active power deal.
        currency: Currency of cost and reward.
        min_power / average_power / max_power: Consumption statistics since midnight (W).
        min_power_production / max_power_production: Production statistics since midnight (W).
        voltage_phase1..3: Voltage per phase (V); not part of every meter frame.
        current_l1..3: Current per phase (A); not part of every meter frame.
        last_meter_consumption: Active import register state (kWh).
        last_meter_production: Active export register state (kWh).
        power_factor: Active power / apparent power.
        signal_strength: Device signal strength (Pulse: dB, Watty: percent).

    Every field except timestamp is None when the peer did not send it.
    """
    timestamp: datetime | None
    power: float | None = None
    power_reactive: float | None = None
    power_production: float | None = None
    power_production_reactive: float | None = None
    accumulated_consumption: float | None = None
    accumulated_consumption_last_hour: float | None = None
    accumulated_production: float | None = None
    accumulated_production_last_hour: float | None = None
    accumulated_cost: float | None = None
    accumulated_reward: float | None = None
    currency: str | None = None
    min_power: float | None = None
    average_power: float | None = None
    max_power: float | None = None
    min_power_production: float | None = None
    max_power_production: float | None = None
    voltage_phase1: float | None = None
    voltage_phase2: float | None = None
    voltage_phase3: float | None = None
    current_l1: float | None = None
    current_l2: float | None = None
    current_l3: float | None = None
    last_meter_consumption: float | None = None
    last_meter_production: float | None = None
    power_factor: float | None = None
    signal_strength: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RealTimeMeasurement":
        """Build a measurement from the camelCase 'liveMeasurement' object"""
        return cls(
            timestamp=_parse_timestamp(payload.get("timestamp")),
            power=payload.get("power"),
            power_reactive=payload.get("powerReactive"),
            power_production=payload.get("powerProduction"),
            power_production_reactive=payload.get("powerProductionReactive"),
            accumulated_consumption=payload.get("accumulatedConsumption"),
            accumulated_consumption_last_hour=payload.get("accumulatedConsumptionLastHour"),
            accumulated_production=payload.get("accumulatedProduction"),
            accumulated_production_last_hour=payload.get("accumulatedProductionLastHour"),
            accumulated_cost=payload.get("accumulatedCost"),
            accumulated_reward=payload.get("accumulatedReward"),
            currency=payload.get("currency"),
            min_power=payload.get("minPower"),
            average_power=payload.get("averagePower"),
            max_power=payload.get("maxPower"),
            min_power_production=payload.get("minPowerProduction"),
            max_power_production=payload.get("maxPowerProduction"),
            voltage_phase1=payload.get("voltagePhase1"),
            voltage_phase2=payload.get("voltagePhase2"),
            voltage_phase3=payload.get("voltagePhase3"),
            current_l1=payload.get("currentL1"),
            current_l2=payload.get("currentL2"),
            current_l3=payload.get("currentL3"),
            last_meter_consumption=payload.get("lastMeterConsumption"),
            last_meter_production=payload.get("lastMeterProduction"),
            power_factor=payload.get("powerFactor"),
            signal_strength=payload.get("signalStrength"),
        )


@dataclass(frozen=True)
class RealTimeDevice:
    """
    Outcome of the HTTP bootstrap.

    Attributes:
        websocket_subscription_url: Where to open the subscription socket. May rotate.
        home_ids: Homes with realTimeConsumptionEnabled, in API order.
    """
    websocket_subscription_url: str
    home_ids: tuple[str, ...] = ()

    @property
    def eligible(self) -> bool:
        return bool(self.websocket_subscription_url and self.home_ids)


class Observer(Protocol):
    """
    Receiver of one home stream.

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    def on_next(self, measurement: RealTimeMeasurement) -> None:
        """Called for every measurement, in the order they were received."""
        ...

    def on_error(self, error: Exception) -> None:
        """
        Called on transient failures (connection lost, protocol error).

        The stream may deliver on_next again after recovery.
        """
        ...

    def on_completed(self) -> None:
        """Called once when the stream ends. Nothing is delivered afterwards."""
        ...


def _ignore(*args) -> None:
    pass


@dataclass(eq=False)
class CallbackObserver:
    """Observer built from plain callables; missing callbacks are no-ops."""
    on_next: Callable[[RealTimeMeasurement], None] = field(default=_ignore)
    on_error: Callable[[Exception], None] = field(default=_ignore)
    on_completed: Callable[[], None] = field(default=_ignore)
