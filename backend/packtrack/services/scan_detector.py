# Overview: Keystroke-timing classifier that tells barcode-scanner input from typing or paste.

"""
Scan Authenticity Detector

WHY: Pack barcodes must come off the physical pack. A hand-typed or pasted
24-digit string can record a pack the store never received, or a closing
serial nobody looked at. Scanners emit a whole barcode in a burst of
keystrokes a few milliseconds apart; people type an order of magnitude
slower and paste arrives with no keystrokes at all.

SESSIONS:
    One ScanDetector per input field. It is created when the field gains
    focus, fed every keystroke, and reset on clear, rejection or submit.
    Nothing is module-global, so timing from one field can never bleed
    into another.

CLASSIFICATION:
    - PASTE:   input arrived through a paste event. Rejected outright under
               scan-only enforcement, whatever the timing.
    - MANUAL:  slow_strikes deltas at or above slow_threshold_ms. Raised the
               moment the threshold is crossed, not when the field is done.
    - SCANNER: every delta after the first is at or below fast_threshold_ms.
               The first delta is a grace period (scanner focus acquisition).
    - UNKNOWN: fewer than min_chars characters.

POLICY: the millisecond thresholds were tuned empirically. They live in
ScanPolicy (and app config) and are not business rules.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Sequence

from ..validation import ValidationError


logger = logging.getLogger(__name__)


class InputMethod(str, Enum):
    SCANNER = "SCANNER"
    MANUAL = "MANUAL"
    PASTE = "PASTE"
    UNKNOWN = "UNKNOWN"


class ScanRejected(ValidationError):
    """Input was not produced by a barcode scanner. Clear the field and rescan."""

    code = "SCAN_REJECTED"

    def __init__(self, message: str, metrics: "ScanMetrics | None" = None):
        super().__init__(message)
        self.metrics = metrics


class ManualEntryRejected(ScanRejected):
    code = "MANUAL_ENTRY_REJECTED"


class PasteNotAllowed(ScanRejected):
    code = "PASTE_NOT_ALLOWED"


@dataclass(frozen=True)
class ScanPolicy:
    fast_threshold_ms: int = 15
    slow_threshold_ms: int = 100
    slow_strikes: int = 2
    min_chars: int = 4
    max_pause_ms: int = 500
    enforce: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ScanPolicy":
        """Build a policy from a Flask config mapping (SCAN_* keys)."""
        return cls(
            fast_threshold_ms=int(config.get("SCAN_FAST_THRESHOLD_MS", cls.fast_threshold_ms)),
            slow_threshold_ms=int(config.get("SCAN_SLOW_THRESHOLD_MS", cls.slow_threshold_ms)),
            slow_strikes=int(config.get("SCAN_SLOW_STRIKES", cls.slow_strikes)),
            enforce=bool(config.get("SCAN_ONLY_ENFORCEMENT", cls.enforce)),
        )


DEFAULT_POLICY = ScanPolicy()


@dataclass(frozen=True)
class ScanMetrics:
    total_input_ms: int
    avg_delay_ms: float
    min_delay_ms: int
    max_delay_ms: int
    stddev_ms: float
    char_count: int
    timestamps: tuple[int, ...]
    input_method: InputMethod
    confidence: float
    rejection_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "total_input_ms": self.total_input_ms,
            "avg_inter_key_delay_ms": round(self.avg_delay_ms, 2),
            "min_inter_key_delay_ms": self.min_delay_ms,
            "max_inter_key_delay_ms": self.max_delay_ms,
            "inter_key_stddev_ms": round(self.stddev_ms, 2),
            "char_count": self.char_count,
            "input_method": self.input_method.value,
            "confidence": self.confidence,
            "rejection_reason": self.rejection_reason,
        }


@dataclass(frozen=True)
class ScanResult:
    value: str
    input_method: InputMethod
    accepted: bool
    metrics: ScanMetrics


@dataclass(frozen=True)
class MetricsVerdict:
    valid: bool
    tampered: bool
    reason: str | None
    reanalyzed: ScanMetrics | None = None


def intervals(timestamps: Sequence[int]) -> list[int]:
    return [b - a for a, b in zip(timestamps, timestamps[1:])]


def sample_stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1); 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / (len(values) - 1))


def analyze_timestamps(
    timestamps: Sequence[int],
    policy: ScanPolicy = DEFAULT_POLICY,
    *,
    pasted: bool = False,
) -> ScanMetrics:
    """
    Classify a finished keystroke stream.

    Args:
        timestamps: Keystroke times in epoch milliseconds, non-decreasing
        policy: Thresholds to apply
        pasted: True when any part of the input came from a paste event

    Returns:
        ScanMetrics with the input method and the timing statistics behind it
    """
    ts = tuple(int(t) for t in timestamps)
    deltas = intervals(ts)
    # First delta is the focus-acquisition grace period
    graded = deltas[1:]

    stats = dict(
        total_input_ms=(ts[-1] - ts[0]) if len(ts) > 1 else 0,
        avg_delay_ms=(sum(deltas) / len(deltas)) if deltas else 0.0,
        min_delay_ms=min(deltas) if deltas else 0,
        max_delay_ms=max(deltas) if deltas else 0,
        stddev_ms=sample_stddev(deltas),
        char_count=len(ts),
        timestamps=ts,
    )

    if pasted:
        return ScanMetrics(
            **stats,
            input_method=InputMethod.PASTE,
            confidence=1.0,
            rejection_reason="Pasted input is not allowed; scan the barcode",
        )

    if len(ts) < policy.min_chars:
        return ScanMetrics(
            **stats,
            input_method=InputMethod.UNKNOWN,
            confidence=0.0,
            rejection_reason=f"Insufficient data: {len(ts)} keystrokes",
        )

    strikes = sum(1 for d in deltas if d >= policy.slow_threshold_ms)
    fast = sum(1 for d in graded if d <= policy.fast_threshold_ms)
    graded_mean = (sum(graded) / len(graded)) if graded else 0.0

    reason = None
    if strikes >= policy.slow_strikes:
        reason = f"{strikes} keystroke gaps of {policy.slow_threshold_ms}ms or more"
    elif graded and max(graded) > policy.max_pause_ms:
        reason = f"Pause of {max(graded)}ms inside the input"
    elif graded_mean > policy.fast_threshold_ms:
        reason = f"Average delay {graded_mean:.1f}ms exceeds scanner speed"

    if reason is None:
        confidence = round(fast / len(graded), 2) if graded else 1.0
        return ScanMetrics(**stats, input_method=InputMethod.SCANNER, confidence=confidence)

    confidence = round(1 - fast / len(graded), 2) if graded else 0.5
    return ScanMetrics(
        **stats,
        input_method=InputMethod.MANUAL,
        confidence=max(confidence, 0.5),
        rejection_reason=reason,
    )


class ScanDetector:
    """
    Per-field keystroke collector.

    Usage:
        detector = ScanDetector(policy)
        for char, ts in events:
            detector.key(char, ts)      # may raise ManualEntryRejected
        result = detector.finish()      # may raise ManualEntryRejected

    Rejection resets the detector before raising, so a rejected attempt can
    never leak keystrokes into the next scan.
    """

    def __init__(self, policy: ScanPolicy | None = None):
        self.policy = policy or DEFAULT_POLICY
        self._chars: list[str] = []
        self._timestamps: list[int] = []
        self._pasted = False
        self._strikes = 0
        self._manual = False

    def __repr__(self) -> str:
        return f"<ScanDetector chars={len(self._chars)} strikes={self._strikes} enforce={self.policy.enforce}>"

    @property
    def value(self) -> str:
        return "".join(self._chars)

    @property
    def is_empty(self) -> bool:
        return not self._chars

    def reset(self) -> None:
        self._chars.clear()
        self._timestamps.clear()
        self._pasted = False
        self._strikes = 0
        self._manual = False

    def key(self, char: str, timestamp_ms: int) -> InputMethod:
        """
        Record one keystroke and return the provisional classification.

        Raises:
            ManualEntryRejected: Under enforcement, as soon as the slow-gap
                strike count is reached
            ValueError: If timestamps go backwards
        """
        if self._timestamps:
            delta = timestamp_ms - self._timestamps[-1]
            if delta < 0:
                raise ValueError("keystroke timestamps must be non-decreasing")
            if delta >= self.policy.slow_threshold_ms:
                self._strikes += 1

        self._chars.append(char)
        self._timestamps.append(timestamp_ms)

        if self._strikes >= self.policy.slow_strikes and not self._manual:
            self._manual = True
            if self.policy.enforce:
                metrics = analyze_timestamps(self._timestamps, self.policy)
                if metrics.input_method != InputMethod.MANUAL:
                    # Too few keystrokes to grade; the strikes alone decide
                    metrics = replace(
                        metrics,
                        input_method=InputMethod.MANUAL,
                        rejection_reason=(
                            f"{self._strikes} keystroke gaps of "
                            f"{self.policy.slow_threshold_ms}ms or more"
                        ),
                    )
                logger.info(
                    "Manual entry rejected after %d keystrokes (%d slow gaps)",
                    len(self._timestamps), self._strikes,
                )
                self.reset()
                raise ManualEntryRejected(
                    "Manual entry detected. Please scan the barcode.", metrics
                )

        return self._provisional()

    def paste(self, text: str) -> InputMethod:
        """
        Record a paste event.

        Raises:
            PasteNotAllowed: Under enforcement, regardless of timing
        """
        if self.policy.enforce:
            logger.info("Paste rejected on scan-only field (%d chars)", len(text))
            self.reset()
            raise PasteNotAllowed("Pasting is not allowed. Please scan the barcode.")
        self._chars.extend(text)
        self._pasted = True
        return InputMethod.PASTE

    def finish(self) -> ScanResult:
        """
        Classify the completed input and reset for the next scan.

        Raises:
            ManualEntryRejected: Under enforcement when the input is not SCANNER
        """
        value = self.value
        metrics = analyze_timestamps(self._timestamps, self.policy, pasted=self._pasted)
        self.reset()

        accepted = metrics.input_method == InputMethod.SCANNER or not self.policy.enforce
        if not accepted:
            raise ManualEntryRejected(
                metrics.rejection_reason or "Input was not scanned", metrics
            )
        return ScanResult(
            value=value,
            input_method=metrics.input_method,
            accepted=accepted,
            metrics=metrics,
        )

    def _provisional(self) -> InputMethod:
        if self._pasted:
            return InputMethod.PASTE
        if self._manual:
            return InputMethod.MANUAL
        graded = intervals(self._timestamps)[1:]
        if all(d <= self.policy.fast_threshold_ms for d in graded):
            return InputMethod.SCANNER
        return InputMethod.UNKNOWN


def validate_submitted_metrics(
    submitted: Mapping[str, Any],
    *,
    now_ms: int,
    policy: ScanPolicy = DEFAULT_POLICY,
    max_age_ms: int = 120_000,
    future_skew_ms: int = 5_000,
    delay_tolerance_ms: float = 5.0,
) -> MetricsVerdict:
    """
    Re-check client-reported scan metrics on the server.

    The browser does the live detection, but its verdict is only a claim.
    The raw keystroke timestamps are re-analyzed here; a claim that does
    not match them, or timestamps from the future or too far in the past,
    marks the submission as tampered.
    """
    raw = submitted.get("keystroke_timestamps")
    if not isinstance(raw, (list, tuple)) or not raw:
        return MetricsVerdict(False, False, "keystroke_timestamps are required")
    if any(isinstance(t, bool) or not isinstance(t, int) for t in raw):
        return MetricsVerdict(False, False, "keystroke_timestamps must be integers")

    timestamps = list(raw)
    if any(b < a for a, b in zip(timestamps, timestamps[1:])):
        return MetricsVerdict(False, True, "Keystroke timestamps are out of order")
    if timestamps[-1] > now_ms + future_skew_ms:
        return MetricsVerdict(False, True, "Keystroke timestamps are in the future")
    if now_ms - timestamps[-1] > max_age_ms:
        return MetricsVerdict(False, True, "Keystroke timestamps are too old")

    reanalyzed = analyze_timestamps(timestamps, policy)

    claimed_method = submitted.get("input_method")
    if claimed_method is not None and claimed_method != reanalyzed.input_method.value:
        return MetricsVerdict(
            False, True,
            f"Claimed input method {claimed_method} does not match keystroke timestamps",
            reanalyzed,
        )

    claimed_avg = submitted.get("avg_inter_key_delay_ms")
    if claimed_avg is not None:
        try:
            drift = abs(float(claimed_avg) - reanalyzed.avg_delay_ms)
        except (TypeError, ValueError):
            return MetricsVerdict(False, False, "avg_inter_key_delay_ms must be a number", reanalyzed)
        if drift > delay_tolerance_ms:
            return MetricsVerdict(
                False, True,
                "Claimed timing metrics do not match keystroke timestamps",
                reanalyzed,
            )

    if reanalyzed.input_method != InputMethod.SCANNER:
        return MetricsVerdict(False, False, reanalyzed.rejection_reason, reanalyzed)
    return MetricsVerdict(True, False, None, reanalyzed)
