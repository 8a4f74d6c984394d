# cpe/invoice.py

"""
Modelo de datos del comprobante electrónico.

Los importes son ``Decimal`` (nunca float) para no arrastrar errores de
redondeo hasta el XML firmado.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple


TIPO_FACTURA = '01'
TIPO_BOLETA = '03'
TIPO_NOTA_CREDITO = '07'
TIPO_NOTA_DEBITO = '08'

TIPOS_DOCUMENTO = {
    TIPO_FACTURA: 'Factura',
    TIPO_BOLETA: 'Boleta',
    TIPO_NOTA_CREDITO: 'Nota de Crédito',
    TIPO_NOTA_DEBITO: 'Nota de Débito',
}


@dataclass(frozen=True)
class Address:
    line: str = ''
    ubigeo: str = ''
    region: str = ''
    province: str = ''
    district: str = ''
    country_code: str = 'PE'


@dataclass(frozen=True)
class Party:
    document_type: str
    document_number: str
    legal_name: str
    commercial_name: Optional[str] = None
    address: Optional[Address] = None


@dataclass(frozen=True)
class LineItem:
    product_code: str
    description: str
    unit_code: str
    quantity: Decimal
    unit_value: Decimal
    unit_price: Decimal
    line_total: Decimal
    tax_affectation: str
    tax_amount: Decimal
    tax_percent: Decimal = Decimal('18')


@dataclass(frozen=True)
class Legend:
    code: str
    value: str


@dataclass(frozen=True)
class AffectedDocument:
    """Comprobante que modifica una nota de crédito/débito"""

    document_type: str
    series: str
    correlative: str
    response_code: str
    description: str


@dataclass(frozen=True)
class Invoice:
    document_type: str
    series: str
    correlative: str
    issue_date: date
    currency: str
    issuer: Party
    recipient: Party
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    lines: Tuple[LineItem, ...] = ()
    legends: Tuple[Legend, ...] = ()
    affected_document: Optional[AffectedDocument] = None
    operation_type: str = '0101'

    @property
    def document_id(self):
        return f"{self.series}-{self.correlative}"

    @property
    def base_filename(self):
        """Nombre de archivo según estándar SUNAT"""
        return f"{self.issuer.document_number}-{self.document_type}-{self.series}-{self.correlative}"

    @property
    def xml_filename(self):
        return f"{self.base_filename}.xml"

    @property
    def zip_filename(self):
        return f"{self.base_filename}.zip"

    @property
    def cdr_filename(self):
        return f"R-{self.base_filename}.xml"

    @property
    def is_note(self):
        return self.document_type in (TIPO_NOTA_CREDITO, TIPO_NOTA_DEBITO)
