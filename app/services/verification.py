"""Presence verification.

One evaluator per method turns a raw client signal plus the office's reference
data into a ``MethodEvaluation``. ``verify`` runs every supplied signal through
its evaluator and reconciles the results using the strategy table built from
settings (priority order and trust weight per method).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import OfficeLocation, QRCode, QRScan, VerificationMethod, WifiNetwork, WifiSecurityLevel
from app.services.location import evaluate_geofence
from app.services.office_time import normalize_ts
from app.settings import get_method_weights, get_settings, get_verification_priority

logger = logging.getLogger("app.verification")

NO_METHOD_AVAILABLE = "NO_VERIFICATION_METHOD_AVAILABLE"


class VerificationErrorKind(str, enum.Enum):
    SIGNAL_UNAVAILABLE = "signal_unavailable"
    OUT_OF_RANGE = "out_of_range"
    NETWORK_MISMATCH = "network_mismatch"
    CODE_INVALID_OR_EXPIRED = "code_invalid_or_expired"


@dataclass(frozen=True)
class GpsSignal:
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class VerificationSignals:
    gps: GpsSignal | None = None
    wifi_ssid: str | None = None
    qr_payload: str | None = None

    def supplied(self) -> list[VerificationMethod]:
        methods: list[VerificationMethod] = []
        if self.gps is not None:
            methods.append(VerificationMethod.GPS)
        if self.wifi_ssid is not None:
            methods.append(VerificationMethod.WIFI)
        if self.qr_payload is not None:
            methods.append(VerificationMethod.QR_CODE)
        return methods


@dataclass(frozen=True)
class MethodEvaluation:
    method: VerificationMethod
    passed: bool
    confidence: float
    reason: str | None = None
    error_kind: VerificationErrorKind | None = None
    evidence: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MethodStrategy:
    priority: int
    weight: float


@dataclass
class VerificationResult:
    success: bool
    method: VerificationMethod
    confidence: float
    timestamp: datetime
    office_location_id: int
    error: str | None = None
    error_kind: VerificationErrorKind | None = None
    method_count: int = 0
    evaluations: list[MethodEvaluation] = field(default_factory=list)


_ERROR_MESSAGES = {
    "GPS_PERMISSION_DENIED": "Location permission was denied on this device.",
    "GPS_UNAVAILABLE": "No location fix was available.",
    "GPS_OUT_OF_RANGE": "Location is outside the office geofence.",
    "WIFI_UNSUPPORTED_ON_CLIENT": "This client cannot report the connected WiFi network.",
    "WIFI_NETWORK_MISMATCH": "Connected WiFi network is not registered for this office.",
    "QR_CODE_NOT_FOUND": "QR code is not recognised.",
    "QR_CODE_INACTIVE": "QR code has been deactivated.",
    "QR_CODE_EXPIRED": "QR code has expired.",
    "QR_CODE_WRONG_OFFICE": "QR code belongs to a different office.",
    NO_METHOD_AVAILABLE: "No verification method available.",
}


def describe_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    return _ERROR_MESSAGES.get(reason, reason)


def _failed(
    method: VerificationMethod,
    reason: str,
    kind: VerificationErrorKind,
    evidence: dict[str, Any] | None = None,
) -> MethodEvaluation:
    return MethodEvaluation(
        method=method,
        passed=False,
        confidence=0.0,
        reason=reason,
        error_kind=kind,
        evidence=evidence or {},
    )


def evaluate_gps(signal: GpsSignal, office: OfficeLocation) -> MethodEvaluation:
    if signal.error:
        reason = "GPS_PERMISSION_DENIED" if signal.error == "permission_denied" else "GPS_UNAVAILABLE"
        return _failed(
            VerificationMethod.GPS,
            reason,
            VerificationErrorKind.SIGNAL_UNAVAILABLE,
            {"client_error": signal.error},
        )
    if signal.lat is None or signal.lon is None:
        return _failed(VerificationMethod.GPS, "GPS_UNAVAILABLE", VerificationErrorKind.SIGNAL_UNAVAILABLE)

    passed, confidence, flags = evaluate_geofence(
        center_lat=office.lat,
        center_lon=office.lon,
        radius_m=float(office.geofence_radius_m),
        lat=signal.lat,
        lon=signal.lon,
        accuracy_m=signal.accuracy_m,
        floor=get_settings().gps_confidence_floor,
    )
    if not passed:
        return _failed(VerificationMethod.GPS, "GPS_OUT_OF_RANGE", VerificationErrorKind.OUT_OF_RANGE, flags)
    return MethodEvaluation(method=VerificationMethod.GPS, passed=True, confidence=confidence, evidence=flags)


def _wifi_tier_confidence(level: WifiSecurityLevel) -> float:
    settings = get_settings()
    return {
        WifiSecurityLevel.ENTERPRISE: settings.wifi_confidence_enterprise,
        WifiSecurityLevel.SECURE: settings.wifi_confidence_secure,
        WifiSecurityLevel.OPEN: settings.wifi_confidence_open,
    }[level]


def evaluate_wifi(ssid: str | None, networks: list[WifiNetwork]) -> MethodEvaluation:
    normalized = (ssid or "").strip()
    if not normalized:
        return _failed(
            VerificationMethod.WIFI,
            "WIFI_UNSUPPORTED_ON_CLIENT",
            VerificationErrorKind.SIGNAL_UNAVAILABLE,
        )

    matches = [network for network in networks if network.is_active and network.ssid == normalized]
    if not matches:
        return _failed(
            VerificationMethod.WIFI,
            "WIFI_NETWORK_MISMATCH",
            VerificationErrorKind.NETWORK_MISMATCH,
            {"ssid": normalized},
        )

    # Duplicate SSIDs cannot exist per office, but take the strongest tier anyway.
    best = max(matches, key=lambda network: _wifi_tier_confidence(network.security_level))
    return MethodEvaluation(
        method=VerificationMethod.WIFI,
        passed=True,
        confidence=_wifi_tier_confidence(best.security_level),
        evidence={
            "ssid": normalized,
            "network_id": best.id,
            "security_level": best.security_level.value,
        },
    )


def evaluate_qr(
    payload: str | None,
    qr_code: QRCode | None,
    *,
    office_location_id: int,
    now: datetime,
) -> MethodEvaluation:
    kind = VerificationErrorKind.CODE_INVALID_OR_EXPIRED
    if qr_code is None:
        return _failed(VerificationMethod.QR_CODE, "QR_CODE_NOT_FOUND", kind)

    evidence = {"code_id": qr_code.id}
    # Expiry is checked first: an expired code never passes whatever its flag.
    if qr_code.expires_at is not None and normalize_ts(qr_code.expires_at) <= normalize_ts(now):
        return _failed(VerificationMethod.QR_CODE, "QR_CODE_EXPIRED", kind, evidence)
    if not qr_code.is_active:
        return _failed(VerificationMethod.QR_CODE, "QR_CODE_INACTIVE", kind, evidence)
    if qr_code.office_location_id != office_location_id:
        return _failed(VerificationMethod.QR_CODE, "QR_CODE_WRONG_OFFICE", kind, evidence)

    return MethodEvaluation(
        method=VerificationMethod.QR_CODE,
        passed=True,
        confidence=get_settings().qr_confidence,
        evidence={**evidence, "location_description": qr_code.location_description},
    )


def build_strategy_table() -> dict[VerificationMethod, MethodStrategy]:
    priority = get_verification_priority()
    weights = get_method_weights()
    table: dict[VerificationMethod, MethodStrategy] = {}
    for method in (VerificationMethod.QR_CODE, VerificationMethod.WIFI, VerificationMethod.GPS):
        rank = priority.index(method.value) if method.value in priority else len(priority)
        table[method] = MethodStrategy(priority=rank, weight=weights.get(method.value, 1.0))
    return table


def _weighted(evaluation: MethodEvaluation, strategy: MethodStrategy) -> MethodEvaluation:
    if not evaluation.passed:
        return evaluation
    confidence = min(max(evaluation.confidence * strategy.weight, 0.0), 1.0)
    return MethodEvaluation(
        method=evaluation.method,
        passed=True,
        confidence=round(confidence, 4),
        reason=None,
        error_kind=None,
        evidence=evaluation.evidence,
    )


def _failure_rank(
    evaluation: MethodEvaluation,
    table: dict[VerificationMethod, MethodStrategy],
) -> tuple[int, int]:
    unavailable = 1 if evaluation.error_kind == VerificationErrorKind.SIGNAL_UNAVAILABLE else 0
    return unavailable, table[evaluation.method].priority


def reconcile(
    evaluations: list[MethodEvaluation],
    *,
    office_location_id: int,
    now: datetime,
    table: dict[VerificationMethod, MethodStrategy] | None = None,
) -> VerificationResult:
    """Fold per-method evaluations into a single verdict."""
    table = table or build_strategy_table()
    timestamp = normalize_ts(now)

    if not evaluations:
        return VerificationResult(
            success=False,
            method=VerificationMethod.MANUAL,
            confidence=0.0,
            timestamp=timestamp,
            office_location_id=office_location_id,
            error=NO_METHOD_AVAILABLE,
        )

    weighted = [_weighted(item, table[item.method]) for item in evaluations]
    weighted.sort(key=lambda item: table[item.method].priority)
    passing = [item for item in weighted if item.passed]

    if passing:
        primary = max(passing, key=lambda item: (item.confidence, -table[item.method].priority))
        return VerificationResult(
            success=True,
            method=primary.method,
            confidence=primary.confidence,
            timestamp=timestamp,
            office_location_id=office_location_id,
            method_count=len(passing),
            evaluations=weighted,
        )

    chosen = min(weighted, key=lambda item: _failure_rank(item, table))
    return VerificationResult(
        success=False,
        method=chosen.method,
        confidence=0.0,
        timestamp=timestamp,
        office_location_id=office_location_id,
        error=chosen.reason,
        error_kind=chosen.error_kind,
        method_count=0,
        evaluations=weighted,
    )


def _resolve_office(db: Session, office_location_id: int) -> OfficeLocation:
    office = db.get(OfficeLocation, office_location_id)
    if office is None or not office.is_active:
        raise ApiError(
            status_code=404,
            code="OFFICE_LOCATION_NOT_FOUND",
            message="Office location not found.",
        )
    return office


def _load_office_networks(db: Session, office_location_id: int) -> list[WifiNetwork]:
    return list(
        db.scalars(
            select(WifiNetwork).where(
                WifiNetwork.office_location_id == office_location_id,
                WifiNetwork.is_active.is_(True),
            )
        ).all()
    )


def _resolve_qr_code_by_value(db: Session, *, code_value: str) -> QRCode | None:
    normalized = code_value.strip()
    if not normalized:
        return None
    return db.scalar(select(QRCode).where(QRCode.code_value == normalized))


def _has_recent_counted_scan(
    db: Session,
    *,
    employee_id: int,
    qr_code_id: int,
    now: datetime,
) -> bool:
    window_start = now - timedelta(seconds=get_settings().qr_rescan_window_seconds)
    recent_scan_id = db.scalar(
        select(QRScan.id)
        .where(
            QRScan.employee_id == employee_id,
            QRScan.qr_code_id == qr_code_id,
            QRScan.counted.is_(True),
            QRScan.scanned_at >= window_start,
            QRScan.scanned_at <= now,
        )
        .limit(1)
    )
    return recent_scan_id is not None


def record_qr_scan(db: Session, *, employee_id: int, qr_code_id: int, now: datetime) -> bool:
    """Ledger a successful scan; returns whether it counted towards scan_count."""
    counted = not _has_recent_counted_scan(db, employee_id=employee_id, qr_code_id=qr_code_id, now=now)
    db.add(QRScan(employee_id=employee_id, qr_code_id=qr_code_id, scanned_at=now, counted=counted))
    if counted:
        db.execute(
            update(QRCode)
            .where(QRCode.id == qr_code_id)
            .values(scan_count=QRCode.scan_count + 1, last_scanned_at=now)
        )
    db.commit()
    return counted


_Evaluator = Callable[[Session, VerificationSignals, OfficeLocation, datetime], MethodEvaluation]


def _run_gps(db: Session, signals: VerificationSignals, office: OfficeLocation, now: datetime) -> MethodEvaluation:
    return evaluate_gps(signals.gps or GpsSignal(), office)


def _run_wifi(db: Session, signals: VerificationSignals, office: OfficeLocation, now: datetime) -> MethodEvaluation:
    return evaluate_wifi(signals.wifi_ssid, _load_office_networks(db, office.id))


def _run_qr(db: Session, signals: VerificationSignals, office: OfficeLocation, now: datetime) -> MethodEvaluation:
    qr_code = _resolve_qr_code_by_value(db, code_value=signals.qr_payload or "")
    return evaluate_qr(signals.qr_payload, qr_code, office_location_id=office.id, now=now)


EVALUATORS: dict[VerificationMethod, _Evaluator] = {
    VerificationMethod.GPS: _run_gps,
    VerificationMethod.WIFI: _run_wifi,
    VerificationMethod.QR_CODE: _run_qr,
}


def verify(
    db: Session,
    *,
    employee_id: int,
    office_location_id: int,
    signals: VerificationSignals,
    now: datetime | None = None,
) -> VerificationResult:
    now_utc = normalize_ts(now)
    office = _resolve_office(db, office_location_id)
    table = build_strategy_table()

    methods = sorted(signals.supplied(), key=lambda method: table[method].priority)
    evaluations = [EVALUATORS[method](db, signals, office, now_utc) for method in methods]
    result = reconcile(evaluations, office_location_id=office.id, now=now_utc, table=table)

    for evaluation in evaluations:
        if evaluation.method == VerificationMethod.QR_CODE and evaluation.passed:
            counted = record_qr_scan(
                db,
                employee_id=employee_id,
                qr_code_id=int(evaluation.evidence["code_id"]),
                now=now_utc,
            )
            if not counted:
                logger.info(
                    "qr_rescan_not_counted",
                    extra={"employee_id": employee_id, "qr_code_id": evaluation.evidence["code_id"]},
                )

    logger.info(
        "verification_completed",
        extra={
            "employee_id": employee_id,
            "office_location_id": office.id,
            "success": result.success,
            "method": result.method.value,
            "confidence": result.confidence,
            "method_count": result.method_count,
            "error": result.error,
        },
    )
    return result
