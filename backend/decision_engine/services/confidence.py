import logging
import math
from datetime import datetime
from typing import List, Optional

from ..models import ConfidenceBadge, Prediction, TransferConfidence, TripLeg, TripPlan
from .geo import parse_iso

logger = logging.getLogger(__name__)

TRANSFER_BUFFER_SEC = 120  # Doors, stairs, platform changes
WALK_SPEED_MPS = 1.4
TRANSFER_WALK_ESTIMATE_M = 50  # Same or adjacent platform
LIKELY_THRESHOLD_SEC = 240
RISKY_THRESHOLD_SEC = 60

BADGE_COLORS = {
    ConfidenceBadge.LIKELY: "#00843D",
    ConfidenceBadge.RISKY: "#ED8B00",
    ConfidenceBadge.UNLIKELY: "#D32F2F",
    ConfidenceBadge.UNKNOWN: "#757575",
}


def calculate_walk_time(distance_meters: float, walk_speed_mps: float = WALK_SPEED_MPS) -> int:
    return math.ceil(distance_meters / walk_speed_mps)


def rate_margin(margin_seconds: float) -> ConfidenceBadge:
    if margin_seconds >= LIKELY_THRESHOLD_SEC:
        return ConfidenceBadge.LIKELY
    elif margin_seconds >= RISKY_THRESHOLD_SEC:
        return ConfidenceBadge.RISKY
    else:
        return ConfidenceBadge.UNLIKELY


def find_prediction(
    predictions: List[Prediction],
    stop_id: str,
    route_id: str
) -> Optional[Prediction]:
    for prediction in predictions:
        if prediction.stop_id == stop_id and prediction.route_id == route_id:
            return prediction
    return None


def drop_departed(schedules: List[Prediction], now: datetime) -> List[Prediction]:
    """Schedule records that have not left yet. Records without a usable time are kept."""
    upcoming = []
    for record in schedules:
        when = parse_iso(record.departure_time or record.arrival_time)
        if when is None or when >= now:
            upcoming.append(record)
    return upcoming


def _unknown(transfer_stop_id: str, walk_time_seconds: int) -> TransferConfidence:
    return TransferConfidence(
        badge=ConfidenceBadge.UNKNOWN,
        margin_seconds=None,
        arrival_time=None,
        departure_time=None,
        walk_time_seconds=walk_time_seconds,
        missing_data=True,
        used_scheduled_times=False,
        transfer_stop_id=transfer_stop_id,
    )


def evaluate_transfer(
    current_leg: TripLeg,
    next_leg: TripLeg,
    predictions: List[Prediction],
    walk_time_seconds: int
) -> TransferConfidence:
    """
    Score one transfer point.

    Margin = (departure - arrival) - (walk time + buffer). Missing or
    unparsable times give an Unknown badge rather than an error; live data
    gaps are expected.
    """
    transfer_stop_id = current_leg.to_stop_id

    arrival_prediction = find_prediction(predictions, transfer_stop_id, current_leg.route_id)
    departure_prediction = find_prediction(predictions, transfer_stop_id, next_leg.route_id)

    if not arrival_prediction or not departure_prediction:
        logger.warning("Missing predictions for transfer at %s", transfer_stop_id)
        return _unknown(transfer_stop_id, walk_time_seconds)

    arrival_time = arrival_prediction.arrival_time or arrival_prediction.departure_time
    departure_time = departure_prediction.departure_time or departure_prediction.arrival_time

    arrival = parse_iso(arrival_time)
    departure = parse_iso(departure_time)
    if arrival is None or departure is None:
        logger.warning("Missing time attributes for transfer at %s", transfer_stop_id)
        return _unknown(transfer_stop_id, walk_time_seconds)

    time_gap_seconds = (departure - arrival).total_seconds()
    required_seconds = walk_time_seconds + TRANSFER_BUFFER_SEC
    margin_seconds = time_gap_seconds - required_seconds
    badge = rate_margin(margin_seconds)

    logger.info(
        "Transfer at %s: %s (margin: %.0fs, gap: %.0fs, required: %ds)",
        transfer_stop_id, badge.value, margin_seconds, time_gap_seconds, required_seconds
    )

    return TransferConfidence(
        badge=badge,
        margin_seconds=margin_seconds,
        arrival_time=arrival_time,
        departure_time=departure_time,
        walk_time_seconds=walk_time_seconds,
        missing_data=False,
        used_scheduled_times=False,
        transfer_stop_id=transfer_stop_id,
    )


def compute_transfer_confidence(
    trip_plan: TripPlan,
    predictions: List[Prediction],
    walk_speed_mps: float = WALK_SPEED_MPS,
    walk_distance_meters: float = TRANSFER_WALK_ESTIMATE_M
) -> List[TransferConfidence]:
    """One confidence entry per adjacent leg pair; empty without a transfer."""
    if not trip_plan.has_transfer or len(trip_plan.legs) < 2:
        return []

    walk_time_seconds = calculate_walk_time(walk_distance_meters, walk_speed_mps)

    return [
        evaluate_transfer(current_leg, next_leg, predictions, walk_time_seconds)
        for current_leg, next_leg in zip(trip_plan.legs, trip_plan.legs[1:])
    ]


def compute_transfer_confidence_with_schedules(
    trip_plan: TripPlan,
    predictions: List[Prediction],
    schedules: List[Prediction],
    walk_speed_mps: float = WALK_SPEED_MPS,
    walk_distance_meters: float = TRANSFER_WALK_ESTIMATE_M
) -> List[TransferConfidence]:
    """
    Prediction-based confidence with a timetable fallback.

    Transfers that had no usable predictions are re-scored from schedule
    records and flagged `used_scheduled_times`. If the schedule is missing
    the same stop/route too, the entry stays Unknown.
    """
    confidences = compute_transfer_confidence(
        trip_plan, predictions, walk_speed_mps, walk_distance_meters
    )
    if not schedules:
        return confidences

    walk_time_seconds = calculate_walk_time(walk_distance_meters, walk_speed_mps)
    leg_pairs = list(zip(trip_plan.legs, trip_plan.legs[1:]))

    results = []
    for confidence, (current_leg, next_leg) in zip(confidences, leg_pairs):
        if not confidence.missing_data:
            results.append(confidence)
            continue

        scheduled = evaluate_transfer(current_leg, next_leg, schedules, walk_time_seconds)
        results.append(scheduled.model_copy(update={"used_scheduled_times": True}))

    return results


def badge_color(badge: ConfidenceBadge) -> str:
    return BADGE_COLORS[badge]
