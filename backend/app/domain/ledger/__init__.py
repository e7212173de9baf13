"""Points and connection ledger exports."""

from .models import (  # noqa: F401
	ACHIEVEMENTS,
	CONNECTION_POINTS,
	FIRST_CONNECTION_BONUS,
	AchievementType,
	ConnectionType,
	SwapStatus,
	TransactionReason,
)
