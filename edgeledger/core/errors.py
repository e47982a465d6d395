"""Error taxonomy shared by every component.

Each error carries a :class:`ReasonCode` so batch pipelines can record a
structured failure without string matching.  Pure modules raise these
directly; the analysis pipeline converts normalisation and blending
failures into result objects, while ledger state-machine violations are
allowed to propagate and abort the single write that caused them.
"""

from __future__ import annotations

from enum import Enum
from typing import Final

#: The only failure text the surrounding product shows to end users.
USER_MESSAGE_INSUFFICIENT_DATA: Final[str] = "insufficient data for this match"


class ReasonCode(str, Enum):
    OK = "OK"
    INPUT_INCOMPLETE = "INPUT_INCOMPLETE"
    ODDS_INVALID = "ODDS_INVALID"
    STATE_CONFLICT = "STATE_CONFLICT"
    DATA_CORRUPTION = "DATA_CORRUPTION"


class EdgeLedgerError(Exception):
    """Base class for all domain errors."""

    reason: ReasonCode = ReasonCode.OK

    @property
    def user_message(self) -> str:
        return USER_MESSAGE_INSUFFICIENT_DATA


class InputIncomplete(EdgeLedgerError, ValueError):
    """A required input dimension is missing."""

    reason = ReasonCode.INPUT_INCOMPLETE


class OddsInvalid(EdgeLedgerError, ValueError):
    """Odds ≤ 1.0, non-finite, or fewer than two valid outcomes."""

    reason = ReasonCode.ODDS_INVALID


class StateConflict(EdgeLedgerError):
    """Write attempted against a ledger entry in the wrong lifecycle state."""

    reason = ReasonCode.STATE_CONFLICT


class DataCorruption(EdgeLedgerError):
    """Stored probabilities fail the sum invariant."""

    reason = ReasonCode.DATA_CORRUPTION
