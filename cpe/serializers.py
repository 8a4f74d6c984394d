# cpe/serializers.py

import re
from decimal import Decimal

from rest_framework import serializers

from .exceptions import BuildError
from .invoice import (
    TIPO_NOTA_CREDITO,
    TIPO_NOTA_DEBITO,
    TIPOS_DOCUMENTO,
    Address,
    AffectedDocument,
    Invoice,
    Legend,
    LineItem,
    Party,
)
from .ubl import tax_scheme_for

TOLERANCIA = Decimal('0.01')
MONEDAS = ('PEN', 'USD', 'EUR')


def _importe(**kwargs):
    return serializers.DecimalField(max_digits=15, decimal_places=2, **kwargs)


def _precision(**kwargs):
    # Cantidad y valor unitario admiten hasta 10 decimales
    return serializers.DecimalField(max_digits=22, decimal_places=10, **kwargs)


class EmpresaSerializer(serializers.Serializer):
    """Emisor o receptor del comprobante"""

    tipoDocIdentidad = serializers.CharField(max_length=1, default='6')
    ruc = serializers.CharField(max_length=15)
    razonSocial = serializers.CharField(max_length=500)
    nombreComercial = serializers.CharField(max_length=500, required=False, allow_blank=True)
    direccion = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    ubigeo = serializers.CharField(max_length=6, required=False, allow_blank=True, default='')
    departamento = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    provincia = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    distrito = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    codigoPais = serializers.CharField(max_length=2, default='PE')

    def validate_ruc(self, value):
        value = value.strip()
        if not value.isalnum():
            raise serializers.ValidationError("El número de documento debe ser alfanumérico")
        return value

    @staticmethod
    def to_party(data):
        address = Address(
            line=data.get('direccion', ''),
            ubigeo=data.get('ubigeo', ''),
            region=data.get('departamento', ''),
            province=data.get('provincia', ''),
            district=data.get('distrito', ''),
            country_code=data.get('codigoPais', 'PE'),
        )
        return Party(
            document_type=data['tipoDocIdentidad'],
            document_number=data['ruc'],
            legal_name=data['razonSocial'],
            commercial_name=data.get('nombreComercial') or None,
            address=address,
        )


class DetalleSerializer(serializers.Serializer):
    """Línea del comprobante"""

    id = serializers.IntegerField(required=False)
    codigoProducto = serializers.CharField(max_length=30, required=False, allow_blank=True, default='')
    descripcion = serializers.CharField(max_length=500)
    unidadMedida = serializers.CharField(max_length=3, default='NIU')
    cantidad = _precision()
    valorUnitario = _precision()
    precioUnitario = _precision()
    valorTotal = _importe()
    afectacionIGV = serializers.CharField(max_length=2, default='10')
    igv = _importe()
    porcentajeIGV = serializers.DecimalField(max_digits=5, decimal_places=2, default=Decimal('18'))

    def validate_descripcion(self, value):
        if not value.strip():
            raise serializers.ValidationError("La descripción no puede estar vacía")
        return value

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad debe ser mayor a 0")
        return value

    def validate_afectacionIGV(self, value):
        try:
            tax_scheme_for(value)
        except BuildError as e:
            raise serializers.ValidationError(e.message)
        return value

    def validate(self, data):
        # cantidad × valor unitario = valor de venta (con tolerancia)
        total_calculado = data['cantidad'] * data['valorUnitario']
        if abs(total_calculado - data['valorTotal']) > TOLERANCIA:
            raise serializers.ValidationError(
                f"El valor total ({data['valorTotal']}) no coincide con cantidad × valor unitario "
                f"({total_calculado.quantize(TOLERANCIA)})"
            )
        return data


class LeyendaSerializer(serializers.Serializer):
    codigo = serializers.CharField(max_length=4)
    valor = serializers.CharField(max_length=500)


class InvoiceInputSerializer(serializers.Serializer):
    """Serializer para validar el JSON de entrada del comprobante"""

    tipoDocumento = serializers.ChoiceField(choices=list(TIPOS_DOCUMENTO.items()))
    serie = serializers.CharField(max_length=4, min_length=4)
    correlativo = serializers.CharField(max_length=8, min_length=1)
    fechaEmision = serializers.DateField()
    moneda = serializers.CharField(max_length=3, default='PEN')
    tipoOperacion = serializers.CharField(max_length=4, default='0101')

    emisor = EmpresaSerializer()
    receptor = EmpresaSerializer()

    totalGravado = _importe()
    totalIGV = _importe()
    totalGeneral = _importe()

    detalles = DetalleSerializer(many=True)
    leyendas = LeyendaSerializer(many=True, required=False, default=list)

    docAfectadoSerie = serializers.CharField(max_length=4, required=False, allow_blank=True)
    docAfectadoCorrelativo = serializers.CharField(max_length=8, required=False, allow_blank=True)
    docAfectadoTipo = serializers.CharField(max_length=2, required=False, allow_blank=True)
    motivoNotaCredito = serializers.CharField(max_length=500, required=False, allow_blank=True)
    codigoMotivo = serializers.CharField(max_length=2, default='01')

    def validate_serie(self, value):
        """Serie: una letra seguida de tres caracteres alfanuméricos (ej: F001, B001)"""
        if not re.match(r'^[A-Z][A-Z0-9]{3}$', value):
            raise serializers.ValidationError(
                "La serie debe tener el formato: una letra y tres caracteres alfanuméricos (ej: F001, B001)"
            )
        return value

    def validate_correlativo(self, value):
        """Se usa tal cual llega, sin rellenar con ceros"""
        value = str(value).strip()
        if not value.isdigit():
            raise serializers.ValidationError("El correlativo debe contener solo dígitos")
        return value

    def validate_moneda(self, value):
        """Validar código de moneda según catálogo SUNAT"""
        if value not in MONEDAS:
            raise serializers.ValidationError(f"Moneda inválida. Debe ser uno de: {', '.join(MONEDAS)}")
        return value

    def validate_emisor(self, value):
        ruc = value['ruc']
        if not ruc.isdigit() or len(ruc) != 11:
            raise serializers.ValidationError("El RUC del emisor debe tener 11 dígitos")
        return value

    def validate_detalles(self, value):
        if not value:
            raise serializers.ValidationError("Debe incluir al menos un detalle")
        return value

    def validate(self, data):
        """Validación de datos cruzados"""
        total_calculado = data['totalGravado'] + data['totalIGV']
        if abs(total_calculado - data['totalGeneral']) > TOLERANCIA:
            raise serializers.ValidationError(
                f"El total general ({data['totalGeneral']}) no coincide con "
                f"total gravado + IGV ({total_calculado})"
            )

        if data['tipoDocumento'] in (TIPO_NOTA_CREDITO, TIPO_NOTA_DEBITO):
            for field in ('docAfectadoSerie', 'docAfectadoCorrelativo', 'docAfectadoTipo', 'motivoNotaCredito'):
                if not data.get(field):
                    raise serializers.ValidationError(
                        {field: "Requerido para notas de crédito y débito"}
                    )
        return data

    def to_invoice(self):
        """Convierte los datos validados en un ``Invoice``"""
        data = self.validated_data
        affected = None
        if data['tipoDocumento'] in (TIPO_NOTA_CREDITO, TIPO_NOTA_DEBITO):
            affected = AffectedDocument(
                document_type=data['docAfectadoTipo'],
                series=data['docAfectadoSerie'],
                correlative=data['docAfectadoCorrelativo'],
                response_code=data['codigoMotivo'],
                description=data['motivoNotaCredito'],
            )

        lines = tuple(
            LineItem(
                product_code=detalle.get('codigoProducto', ''),
                description=detalle['descripcion'],
                unit_code=detalle['unidadMedida'],
                quantity=detalle['cantidad'],
                unit_value=detalle['valorUnitario'],
                unit_price=detalle['precioUnitario'],
                line_total=detalle['valorTotal'],
                tax_affectation=detalle['afectacionIGV'],
                tax_amount=detalle['igv'],
                tax_percent=detalle['porcentajeIGV'],
            )
            for detalle in data['detalles']
        )

        return Invoice(
            document_type=data['tipoDocumento'],
            series=data['serie'],
            correlative=data['correlativo'],
            issue_date=data['fechaEmision'],
            currency=data['moneda'],
            issuer=EmpresaSerializer.to_party(data['emisor']),
            recipient=EmpresaSerializer.to_party(data['receptor']),
            taxable_amount=data['totalGravado'],
            tax_amount=data['totalIGV'],
            total_amount=data['totalGeneral'],
            lines=lines,
            legends=tuple(Legend(code=l['codigo'], value=l['valor']) for l in data.get('leyendas', [])),
            affected_document=affected,
            operation_type=data['tipoOperacion'],
        )
