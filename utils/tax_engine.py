"""
Motor de impuestos - FUENTE ÚNICA DE VERDAD para el cálculo de impuestos

Función pura: mismo (base, descuento, configuración) => mismo desglose.
No accede a la base de datos ni tiene efectos secundarios.

Política de descuento:
  - descuento negativo => InvalidAmount
  - descuento mayor a la base => se recorta a la base (base imponible 0)
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from utils.errors import InvalidAmount
from utils.money import ZERO, _safe_decimal, money

GST_LABEL = "GST"
SERVICE_TAX_LABEL = "Service Tax"


@dataclass(frozen=True)
class TaxConfig:
    gst_percentage: Decimal = Decimal("0")
    service_tax_percentage: Decimal = Decimal("0")
    other_taxes: Tuple[Tuple[str, Decimal], ...] = ()
    tax_enabled: bool = True

    @classmethod
    def from_settings(
        cls,
        gst_percentage: Any,
        service_tax_percentage: Any,
        other_taxes: Optional[List[Dict[str, Any]]] = None,
        tax_enabled: bool = True,
    ) -> "TaxConfig":
        """Construye la configuración desde valores persistidos (JSON de otros impuestos)."""
        others = tuple(
            (str(t.get("name", "Tax")), _safe_decimal(t.get("percentage")))
            for t in (other_taxes or [])
            if isinstance(t, dict)
        )
        return cls(
            gst_percentage=_safe_decimal(gst_percentage),
            service_tax_percentage=_safe_decimal(service_tax_percentage),
            other_taxes=others,
            tax_enabled=bool(tax_enabled),
        )

    def named_rates(self) -> List[Tuple[str, Decimal]]:
        rates = [
            (GST_LABEL, self.gst_percentage),
            (SERVICE_TAX_LABEL, self.service_tax_percentage),
        ]
        rates.extend(self.other_taxes)
        return [(name, pct) for name, pct in rates if pct > 0]


@dataclass(frozen=True)
class TaxLine:
    name: str
    percentage: Decimal
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "percentage": self.percentage, "amount": self.amount}


@dataclass(frozen=True)
class TaxBreakdown:
    base_amount: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    lines: Tuple[TaxLine, ...] = field(default_factory=tuple)
    total_tax: Decimal = ZERO
    total: Decimal = ZERO
    tax_enabled: bool = True

    @classmethod
    def zero(cls, tax_enabled: bool = True) -> "TaxBreakdown":
        return cls(
            base_amount=ZERO,
            discount_amount=ZERO,
            taxable_base=ZERO,
            tax_enabled=tax_enabled,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_amount": self.base_amount,
            "discount_amount": self.discount_amount,
            "taxable_base": self.taxable_base,
            "lines": [line.to_dict() for line in self.lines],
            "total_tax": self.total_tax,
            "total": self.total,
            "tax_enabled": self.tax_enabled,
        }


def calculate_taxes(base_amount: Any, discount_amount: Any, config: TaxConfig) -> TaxBreakdown:
    """
    Calcula el desglose de impuestos.

    Args:
        base_amount: monto bruto (> 0)
        discount_amount: descuento previo a impuestos (>= 0)
        config: configuración de impuestos del hotel

    Returns:
        TaxBreakdown con base imponible, líneas de impuesto, total de
        impuestos y total final.

    Raises:
        InvalidAmount: base <= 0 o descuento negativo
    """
    base = money(base_amount)
    discount = money(discount_amount)

    if base <= 0:
        raise InvalidAmount("El monto base debe ser mayor a 0", {"base_amount": str(base)})
    if discount < 0:
        raise InvalidAmount("El descuento no puede ser negativo", {"discount_amount": str(discount)})

    if discount > base:
        discount = base

    taxable_base = money(base - discount)

    lines = []
    for name, pct in config.named_rates():
        amount = money(taxable_base * pct / Decimal("100")) if config.tax_enabled else ZERO
        lines.append(TaxLine(name=name, percentage=pct, amount=amount))

    total_tax = money(sum((line.amount for line in lines), ZERO))

    return TaxBreakdown(
        base_amount=base,
        discount_amount=discount,
        taxable_base=taxable_base,
        lines=tuple(lines),
        total_tax=total_tax,
        total=money(taxable_base + total_tax),
        tax_enabled=config.tax_enabled,
    )
