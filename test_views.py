"""
Pruebas del endpoint JSON /api/v1/convertir/ y del health check
"""

import json
from unittest.mock import MagicMock

import pytest
from django.test import override_settings
from rest_framework.test import APIRequestFactory

from conftest import CDR_ACEPTADO, RUC_PRUEBA, make_cdr_zip, make_soap_fault, make_soap_response
from cpe import views
from cpe.config import SunatConfig
from cpe.pipeline import SUNATIntegration
from cpe.serializers import InvoiceInputSerializer
from cpe.soap_client import SUNATSoapClient

factory = APIRequestFactory()

PAYLOAD = {
    "tipoDocumento": "01",
    "serie": "F001",
    "correlativo": "1",
    "fechaEmision": "2025-07-13",
    "moneda": "PEN",
    "emisor": {
        "tipoDocIdentidad": "6",
        "ruc": RUC_PRUEBA,
        "razonSocial": "EMPRESA DE PRUEBA S.A.C.",
        "direccion": "AV. LOS PROCERES 123",
        "ubigeo": "150101",
    },
    "receptor": {
        "tipoDocIdentidad": "6",
        "ruc": "20605145648",
        "razonSocial": "CLIENTE DE PRUEBA S.R.L.",
    },
    "totalGravado": 100.00,
    "totalIGV": 18.00,
    "totalGeneral": 118.00,
    "detalles": [
        {
            "id": 1,
            "codigoProducto": "P001",
            "descripcion": "Producto de prueba",
            "unidadMedida": "NIU",
            "cantidad": 1,
            "valorUnitario": 100.00,
            "precioUnitario": 118.00,
            "valorTotal": 100.00,
            "afectacionIGV": "10",
            "igv": 18.00,
        }
    ],
    "leyendas": [{"codigo": "1000", "valor": "CIENTO DIECIOCHO CON 00/100 SOLES"}],
}


def _post(payload):
    body = payload if isinstance(payload, str) else json.dumps(payload)
    request = factory.post('/api/v1/convertir/', data=body, content_type='application/json')
    return views.convertir(request)


@pytest.fixture
def integration(monkeypatch, sunat_config, credentials):
    """Integración real con la sesión HTTP simulada"""
    session = MagicMock()
    integration = SUNATIntegration(
        sunat_config,
        credentials=credentials,
        soap_client=SUNATSoapClient(sunat_config, session=session),
    )
    monkeypatch.setattr(views, 'build_integration', lambda: integration)
    return session


def _respond_with(session, body):
    response = MagicMock()
    response.status_code = 200
    response.__enter__.return_value = response
    response.iter_content.return_value = iter([body])
    session.post.return_value = response


def test_convertir_exitoso(integration):
    _respond_with(integration, make_soap_response(make_cdr_zip({'R.xml': CDR_ACEPTADO})))

    response = _post(PAYLOAD)

    assert response.status_code == 200
    data = response.data
    assert data['status'] == 'success'
    assert data['documentId'] == 'F001-1'
    assert data['xmlHash'].startswith('sha256:')
    assert data['xmlPath'].endswith('20601546913-01-F001-1.xml')
    assert data['sunatCdr'] == CDR_ACEPTADO
    assert data['cdrResponseCode'] == '0'
    assert data['processedAt'].endswith('Z')
    assert len(data['correlationId']) == 36


def test_json_invalido():
    response = _post('{"tipoDocumento": ')
    assert response.status_code == 400
    assert response.data['status'] == 'error'
    assert response.data['errorCode'] == 'ERR_JSON_INVALIDO'


def test_datos_invalidos():
    response = _post({**PAYLOAD, 'serie': 'f1'})
    assert response.status_code == 400
    assert response.data['errorCode'] == 'ERR_JSON_INVALIDO'
    assert 'serie' in response.data['errors']


def test_error_de_procesamiento(integration):
    payload = json.loads(json.dumps(PAYLOAD))
    payload['receptor']['razonSocial'] = 'CLIENTE ☃ S.R.L.'

    response = _post(payload)

    assert response.status_code == 500
    assert response.data['errorCode'] == 'ERR_PROCESAMIENTO'
    assert '[encode]' in response.data['errorMessage']
    integration.post.assert_not_called()


def test_error_de_envio(integration):
    _respond_with(integration, make_soap_fault('El comprobante ya fue informado'))

    response = _post(PAYLOAD)

    assert response.status_code == 502
    assert response.data['errorCode'] == 'ERR_ENVIO_SUNAT'
    assert 'El comprobante ya fue informado' in response.data['errorMessage']


def test_solo_post():
    response = views.convertir(factory.get('/api/v1/convertir/'))
    assert response.status_code == 405


def test_serializer_a_invoice():
    serializer = InvoiceInputSerializer(data=PAYLOAD)
    assert serializer.is_valid(), serializer.errors
    invoice = serializer.to_invoice()

    assert invoice.base_filename == '20601546913-01-F001-1'
    assert invoice.correlative == '1'
    assert str(invoice.total_amount) == '118.00'
    assert invoice.lines[0].tax_affectation == '10'
    assert invoice.issuer.address.ubigeo == '150101'
    assert invoice.legends[0].code == '1000'
    assert invoice.affected_document is None


def test_serializer_nota_requiere_documento_afectado():
    serializer = InvoiceInputSerializer(data={**PAYLOAD, 'tipoDocumento': '07', 'serie': 'FC01'})
    assert not serializer.is_valid()
    assert 'docAfectadoSerie' in serializer.errors


def test_serializer_nota_de_credito():
    serializer = InvoiceInputSerializer(data={
        **PAYLOAD,
        'tipoDocumento': '07',
        'serie': 'FC01',
        'docAfectadoSerie': 'F001',
        'docAfectadoCorrelativo': '1',
        'docAfectadoTipo': '01',
        'motivoNotaCredito': 'Anulación de la operación',
    })
    assert serializer.is_valid(), serializer.errors
    affected = serializer.to_invoice().affected_document
    assert affected.response_code == '01'
    assert affected.series == 'F001'


@pytest.mark.parametrize('cambios, campo', [
    ({'totalGeneral': 120.00}, 'non_field_errors'),
    ({'moneda': 'JPY'}, 'moneda'),
    ({'correlativo': '12A'}, 'correlativo'),
    ({'detalles': []}, 'detalles'),
])
def test_serializer_validaciones(cambios, campo):
    serializer = InvoiceInputSerializer(data={**PAYLOAD, **cambios})
    assert not serializer.is_valid()
    assert campo in serializer.errors


def test_health_check(pem_files):
    cert_path, key_path = pem_files
    config = {'RUC': RUC_PRUEBA, 'CERT_PATH': cert_path, 'KEY_PATH': key_path}
    with override_settings(SUNAT_CONFIG=config):
        response = views.health_check(factory.get('/health/'))

    assert response.status_code == 200
    assert response.data['status'] == 'healthy'
    assert response.data['features']['digital_signature'] is True


def test_health_check_sin_certificado(tmp_path):
    config = {'RUC': RUC_PRUEBA, 'CERT_PATH': str(tmp_path / 'no-existe.pem'),
              'KEY_PATH': str(tmp_path / 'no-existe.key')}
    with override_settings(SUNAT_CONFIG=config):
        response = views.health_check(factory.get('/health/'))

    assert response.status_code == 503
    assert response.data['status'] == 'unhealthy'


def test_configuracion_desde_settings():
    config = {'RUC': RUC_PRUEBA, 'ENVIRONMENT': 'produccion', 'TIMEOUT': '45'}
    with override_settings(SUNAT_CONFIG=config):
        sunat_config = views.get_sunat_config()
    assert isinstance(sunat_config, SunatConfig)
    assert sunat_config.url.startswith('https://e-factura.sunat.gob.pe')
    assert sunat_config.timeout == 45.0
    assert sunat_config.username == f'{RUC_PRUEBA}MODDATOS'
