"""Prompt templates for the Gemini extraction and advisory calls."""

from batteryview.models.reading import AdvisoryPayload

EXTRACTION_PROMPT = """You are an expert system that extracts data from Battery Management \
System (BMS) screenshots.

Analyze every provided screenshot, in order, and extract for each one:
- batteryId: the unique identifier of the battery
- soc: State of Charge (%)
- voltage: pack voltage (V)
- current: current (A), positive when discharging
- remainingCapacity: remaining capacity (Ah)
- maxCellVoltage, minCellVoltage, avgCellVoltage: cell voltages (V)
- cellVoltageDifference: max minus min cell voltage (V)
- cycleCount: number of charge cycles
- power: power (kW)
- mosChargeStatus, mosDischargeStatus: MOS charge / discharge status
- balanceStatus: balance status
- timestamp: the time of day shown in the screenshot, formatted HH:MM or HH:MM:SS

If a value is not present in a screenshot, return null for that field. Never \
invent values.

Return a single JSON object {"results": [...]} with exactly one entry per \
screenshot, in the order the screenshots were given."""

HEALTH_SUMMARY_PROMPT = """You are an AI assistant specializing in summarized overviews of \
battery health.

Based on the following battery data, provide a concise summary of the battery's current \
health status. Include key metrics such as SOC and voltage, and any significant deviations.

If maxCellVoltage, minCellVoltage or averageCellVoltage are null or 0, do not comment on \
them: acknowledge that this data might be missing.

Battery data:
{data}

Write for a non-technical user. Return JSON: {{"summary": "..."}}"""

ALERTS_PROMPT = """You are an AI assistant that identifies critical deviations in battery \
data and generates alerts.

Look specifically for:
1. A low or rapidly dropping State of Charge (SOC).
2. A high voltage difference between cells (maxCellVoltage - minCellVoltage).

If maxCellVoltage or minCellVoltage are null or 0, do NOT generate any cell voltage alert: \
that means the sensor data is missing, not that the cells are imbalanced.

Battery data:
{data}

Return JSON: {{"alerts": ["..."]}}. Return an empty list when nothing is wrong."""

ALERT_SUMMARY_PROMPT = """You are an AI assistant specializing in summarizing battery alerts.

Given the following alerts, write a concise summary highlighting the most critical issues, \
and one actionable recommendation.

Alerts:
{alerts}

Return JSON: {{"summary": "...", "recommendation": "..."}}"""

INSIGHTS_PROMPT = """You are an expert power management AI for an off-grid battery system \
located in {location}.

Current situation:
- State of Charge (SOC): {soc:.1f}%
- Current power draw: {power:.2f} kW ({direction})

Generate exactly four forward-looking insights (next 24-48 hours) answering:
1. Will I need to run the generator?
2. What solar charge should I expect tomorrow?
3. Is the current power consumption normal (a typical base load is under 1 kW)?
4. One opportunity alert or efficiency tip.

Return JSON: {{"insights": [{{"title": "...", "explanation": "...", "icon": "..."}}]}} \
where icon is a Lucide icon name such as "BatteryWarning", "Sun", "Plug" or "Lightbulb"."""


def health_summary_prompt(payload: AdvisoryPayload) -> str:
    return HEALTH_SUMMARY_PROMPT.format(data=payload.model_dump_json(by_alias=True))


def alerts_prompt(payload: AdvisoryPayload) -> str:
    return ALERTS_PROMPT.format(data=payload.model_dump_json(by_alias=True))


def alert_summary_prompt(alerts: list[str]) -> str:
    return ALERT_SUMMARY_PROMPT.format(alerts="\n".join(f"- {a}" for a in alerts))


def insights_prompt(soc: float, power: float, location: str) -> str:
    direction = "discharging" if power > 0 else "charging"
    return INSIGHTS_PROMPT.format(
        location=location, soc=soc, power=power, direction=direction
    )


POWER_RECOMMENDATION_PROMPT = """You are an expert power management AI for an off-grid \
battery system located in {location}.

Current battery status:
- State of Charge (SOC): {soc:.1f}%
- Current power: {power:.2f} kW ({direction})

Consider the expected sun exposure at this location over the next 3 days, then give a \
single, clear recommendation:
- High SOC and plenty of sun expected: suggest using more power (e.g. "run the \
dehumidifier").
- Low SOC and cloudy weather coming: suggest conserving power or running the generator.
- Moderate SOC: give a balanced recommendation.

Write one friendly, easy-to-understand sentence. Return JSON: {{"recommendation": "..."}}"""


def power_recommendation_prompt(soc: float, power: float, location: str) -> str:
    direction = "discharging" if power > 0 else "charging"
    return POWER_RECOMMENDATION_PROMPT.format(
        location=location, soc=soc, power=power, direction=direction
    )
