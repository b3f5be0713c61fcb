"""GraphQL query texts for the bootstrap call and the live measurement subscription"""
from typing import Iterable

LIVE_MEASUREMENT_FIELDS = (
    "timestamp",
    "power",
    "powerReactive",
    "powerProduction",
    "powerProductionReactive",
    "accumulatedConsumption",
    "accumulatedConsumptionLastHour",
    "accumulatedProduction",
    "accumulatedProductionLastHour",
    "accumulatedCost",
    "accumulatedReward",
    "currency",
    "minPower",
    "averagePower",
    "maxPower",
    "minPowerProduction",
    "maxPowerProduction",
    "voltagePhase1",
    "voltagePhase2",
    "voltagePhase3",
    "currentL1",
    "currentL2",
    "currentL3",
    "lastMeterConsumption",
    "lastMeterProduction",
    "powerFactor",
    "signalStrength",
)

REALTIME_DEVICE_QUERY = """
{
  viewer {
    websocketSubscriptionUrl
    homes {
      id
      appNickname
      features {
        realTimeConsumptionEnabled
      }
    }
  }
}
"""


def build_subscription_payload(home_id: str, fields: Iterable[str] | None = None) -> str:
    """
    Build the liveMeasurement subscription for one home.

    Args:
        home_id: Tibber home id
        fields: Field selection; None selects all scalar fields

    Returns:
        The subscription query text
    """
    selection = LIVE_MEASUREMENT_FIELDS if fields is None else tuple(fields)
    if not selection:
        raise ValueError("At least one liveMeasurement field is required")

    unknown = [f for f in selection if f not in LIVE_MEASUREMENT_FIELDS]
    if unknown:
        raise ValueError(f"Unknown liveMeasurement fields: {', '.join(unknown)}")

    return f'subscription{{liveMeasurement(homeId:"{home_id}"){{{",".join(selection)}}}}}'
