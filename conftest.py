"""
Configuración de pytest: Django, certificado de prueba y comprobante de ejemplo
"""

import base64
import os
import zipfile
from datetime import date, datetime, timedelta
from decimal import Decimal
from io import BytesIO

import django
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'sunat_gateway.settings')
django.setup()

from cpe.config import SunatConfig  # noqa: E402
from cpe.invoice import Address, Invoice, Legend, LineItem, Party  # noqa: E402
from cpe.signing import Credentials  # noqa: E402

RUC_PRUEBA = '20601546913'
TESTDATA = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'testdata')


def _crear_certificado(private_key, common_name=RUC_PRUEBA):
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "PE"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Empresa de Prueba S.A.C."),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])
    return x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        issuer
    ).public_key(
        private_key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        datetime.utcnow() - timedelta(days=1)
    ).not_valid_after(
        datetime.utcnow() + timedelta(days=365)
    ).sign(private_key, hashes.SHA256())


@pytest.fixture(scope="session")
def test_certificate_and_key():
    """Clave RSA 2048 y certificado autofirmado fijos de testdata/ (solo para testing)"""
    with open(os.path.join(TESTDATA, 'private_pkcs8.key'), 'rb') as f:
        private_key = serialization.load_pem_private_key(f.read(), password=None)
    with open(os.path.join(TESTDATA, 'public.pem'), 'rb') as f:
        cert = x509.load_pem_x509_certificate(f.read())
    return cert, private_key


@pytest.fixture(scope="session")
def credentials(test_certificate_and_key):
    cert, private_key = test_certificate_and_key
    return Credentials(private_key=private_key, certificate=cert)


@pytest.fixture
def pem_files(test_certificate_and_key, tmp_path):
    """Certificado y clave PKCS#8 en archivos PEM separados"""
    cert, private_key = test_certificate_and_key
    cert_path = tmp_path / 'public.pem'
    key_path = tmp_path / 'private_pkcs8.key'
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return str(cert_path), str(key_path)


@pytest.fixture
def sunat_config(pem_files, tmp_path):
    cert_path, key_path = pem_files
    return SunatConfig(
        ruc=RUC_PRUEBA,
        cert_path=cert_path,
        key_path=key_path,
        output_dir=str(tmp_path / 'storage'),
    )


def make_invoice(**overrides):
    """Factura F001-1 con una sola línea gravada (100.00 + 18.00)"""
    data = dict(
        document_type='01',
        series='F001',
        correlative='1',
        issue_date=date(2025, 7, 13),
        currency='PEN',
        issuer=Party(
            document_type='6',
            document_number=RUC_PRUEBA,
            legal_name='EMPRESA DE PRUEBA S.A.C.',
            commercial_name='EMPRESA DE PRUEBA',
            address=Address(
                line='AV. LOS PROCERES 123',
                ubigeo='150101',
                region='LIMA',
                province='LIMA',
                district='LIMA',
            ),
        ),
        recipient=Party(
            document_type='6',
            document_number='20605145648',
            legal_name='CLIENTE DE PRUEBA S.R.L.',
        ),
        taxable_amount=Decimal('100.00'),
        tax_amount=Decimal('18.00'),
        total_amount=Decimal('118.00'),
        lines=(
            LineItem(
                product_code='P001',
                description='Producto de prueba',
                unit_code='NIU',
                quantity=Decimal('1'),
                unit_value=Decimal('100'),
                unit_price=Decimal('118'),
                line_total=Decimal('100.00'),
                tax_affectation='10',
                tax_amount=Decimal('18.00'),
            ),
        ),
        legends=(Legend(code='1000', value='CIENTO DIECIOCHO CON 00/100 SOLES'),),
    )
    data.update(overrides)
    return Invoice(**data)


@pytest.fixture
def invoice():
    return make_invoice()


def make_cdr_zip(entries):
    """ZIP en memoria con las entradas ``{nombre: contenido}``"""
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def make_soap_response(application_response):
    """Sobre sendBillResponse con el ``applicationResponse`` indicado"""
    if isinstance(application_response, bytes):
        application_response = base64.b64encode(application_response).decode('ascii')
    return (
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        '<soap:Body><br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">'
        f'<applicationResponse>{application_response}</applicationResponse>'
        '</br:sendBillResponse></soap:Body></soap:Envelope>'
    ).encode('utf-8')


def make_soap_fault(fault_string, fault_code='soap-env:Client.0111'):
    return (
        '<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">'
        '<soap-env:Body><soap-env:Fault>'
        f'<faultcode>{fault_code}</faultcode>'
        f'<faultstring>{fault_string}</faultstring>'
        '</soap-env:Fault></soap-env:Body></soap-env:Envelope>'
    ).encode('utf-8')


CDR_ACEPTADO = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<ar:ApplicationResponse xmlns:ar="urn:oasis:names:specification:ubl:schema:xsd:ApplicationResponse-2" '
    'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
    'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">'
    '<cbc:ID>1752412345678</cbc:ID>'
    '<cbc:IssueDate>2025-07-13</cbc:IssueDate>'
    '<cbc:ResponseDate>2025-07-13</cbc:ResponseDate>'
    '<cbc:ResponseTime>10:15:30</cbc:ResponseTime>'
    '<cbc:Note>4252 - El dato ingresado como atributo @listName es incorrecto.</cbc:Note>'
    '<cac:DocumentResponse>'
    '<cac:Response><cbc:ReferenceID>F001-1</cbc:ReferenceID>'
    '<cbc:ResponseCode>0</cbc:ResponseCode>'
    '<cbc:Description>La Factura numero F001-1, ha sido aceptada</cbc:Description>'
    '</cac:Response>'
    '<cac:DocumentReference><cbc:ID>F001-1</cbc:ID></cac:DocumentReference>'
    '</cac:DocumentResponse>'
    '</ar:ApplicationResponse>'
)
