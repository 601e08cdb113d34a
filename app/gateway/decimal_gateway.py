# ============================================================================
# Mess Ledger v1.0.0
# Decimal Gateway - Money Conversion
# ============================================================================
#
# Reliability Level: CRITICAL
# Purpose: Ensures all money values use decimal.Decimal with ROUND_HALF_EVEN
#
# MANDATE:
#   - Every amount read from a client, plan or gateway passes through here
#   - Float contamination is forbidden in billing calculations
#   - Rupee values use 2 decimal places (0.01)
#   - Gateway amounts are integer minor units (paise)
#
# Error Codes:
#   - DEC-001: Decimal conversion failed
#
# ============================================================================

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)


Numeric = Union[str, int, float, Decimal, None]


class DecimalGateway:
    """
    Central conversion layer for money values.

    Example Usage:
        gateway = DecimalGateway()
        price = gateway.to_rupees("500")          # Decimal('500.00')
        paise = gateway.to_minor_units(price)     # 50000
        back = gateway.from_minor_units(50000)    # Decimal('500.00')
    """

    RUPEE_PRECISION = Decimal('0.01')
    RATE_PRECISION = Decimal('0.0001')   # per-meal rates before final rounding
    MINOR_UNITS_PER_MAJOR = 100

    def to_decimal(
        self,
        value: Numeric,
        precision: Optional[Decimal] = None,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """
        Convert any numeric value to Decimal with ROUND_HALF_EVEN.

        Args:
            value: Numeric value to convert (str, int, float, Decimal, None)
            precision: Decimal precision (default: RUPEE_PRECISION)
            correlation_id: Audit trail identifier

        Returns:
            Decimal with specified precision

        Raises:
            ValueError: If value cannot be converted (DEC-001)
        """
        if precision is None:
            precision = self.RUPEE_PRECISION

        if value is None:
            return Decimal('0').quantize(precision, rounding=ROUND_HALF_EVEN)

        try:
            # Always convert via string to avoid float precision loss
            decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
            if not decimal_value.is_finite():
                raise ValueError(f"non-finite value {decimal_value}")
            return decimal_value.quantize(precision, rounding=ROUND_HALF_EVEN)

        except (InvalidOperation, ValueError, TypeError) as e:
            logger.error(
                f"[DEC-001] Decimal conversion failed | "
                f"value={value} | type={type(value).__name__} | "
                f"correlation_id={correlation_id} | error={e}"
            )
            raise ValueError(
                f"DEC-001: Cannot convert '{value}' to Decimal"
            ) from e

    def to_rupees(
        self,
        value: Numeric,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """Convert value to rupees with 2 decimal places."""
        return self.to_decimal(value, self.RUPEE_PRECISION, correlation_id)

    def to_minor_units(
        self,
        value: Numeric,
        correlation_id: Optional[str] = None
    ) -> int:
        """
        Convert a rupee amount to integer paise.

        round(price * 100) with banker's rounding at the paise boundary.
        """
        rupees = self.to_decimal(value, self.RATE_PRECISION, correlation_id)
        paise = (rupees * self.MINOR_UNITS_PER_MAJOR).quantize(
            Decimal('1'), rounding=ROUND_HALF_EVEN
        )
        return int(paise)

    def from_minor_units(
        self,
        minor_units: int,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """Convert integer paise back to rupees."""
        return self.to_rupees(
            Decimal(int(minor_units)) / self.MINOR_UNITS_PER_MAJOR,
            correlation_id
        )


# ============================================================================
# Module-level convenience functions
# ============================================================================

_gateway = DecimalGateway()


def to_rupees(value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for rupee conversion."""
    return _gateway.to_rupees(value, correlation_id)


def to_minor_units(value: Numeric, correlation_id: Optional[str] = None) -> int:
    """Module-level convenience function for paise conversion."""
    return _gateway.to_minor_units(value, correlation_id)
