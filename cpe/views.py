import logging
import uuid

from rest_framework import status
from rest_framework.decorators import api_view, parser_classes
from rest_framework.exceptions import ParseError
from rest_framework.parsers import JSONParser
from rest_framework.response import Response

from .config import get_sunat_config
from .exceptions import (
    BuildError,
    CPEError,
    ExtractionError,
    SigningError,
    TranscodeError,
    TransportError,
)
from .pipeline import SUNATIntegration
from .serializers import InvoiceInputSerializer
from .signing import get_credentials

logger = logging.getLogger(__name__)

ERR_JSON_INVALIDO = 'ERR_JSON_INVALIDO'
ERR_PROCESAMIENTO = 'ERR_PROCESAMIENTO'
ERR_ENVIO_SUNAT = 'ERR_ENVIO_SUNAT'


def build_integration():
    """Integración con la configuración actual de ``settings.SUNAT_CONFIG``"""
    return SUNATIntegration(get_sunat_config())


def responder_error(correlation_id, error_code, error_message, http_status, **extra):
    body = {
        'status': 'error',
        'correlationId': correlation_id,
        'errorCode': error_code,
        'errorMessage': error_message,
    }
    body.update(extra)
    return Response(body, status=http_status)


@api_view(['POST'])
@parser_classes([JSONParser])
def convertir(request):
    """
    Endpoint para convertir el JSON a XML UBL 2.1, firmarlo y enviarlo a SUNAT
    POST /api/v1/convertir/
    """
    correlation_id = str(uuid.uuid4())
    logger.info(f"[{correlation_id}] Petición de conversión y envío recibida")

    try:
        serializer = InvoiceInputSerializer(data=request.data)
    except ParseError as e:
        logger.warning(f"[{correlation_id}] Error decodificando JSON: {e}")
        return responder_error(
            correlation_id, ERR_JSON_INVALIDO,
            "El cuerpo de la petición no es un JSON válido.",
            status.HTTP_400_BAD_REQUEST,
        )

    if not serializer.is_valid():
        logger.warning(f"[{correlation_id}] Datos de entrada inválidos: {serializer.errors}")
        return responder_error(
            correlation_id, ERR_JSON_INVALIDO,
            "Datos de entrada inválidos",
            status.HTTP_400_BAD_REQUEST,
            errors=serializer.errors,
        )

    invoice = serializer.to_invoice()

    try:
        result = build_integration().process(invoice, correlation_id=correlation_id)
    except (BuildError, SigningError, TranscodeError) as e:
        logger.error(f"[{correlation_id}] Error procesando documento: {e}")
        return responder_error(
            correlation_id, ERR_PROCESAMIENTO, str(e),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    except (TransportError, ExtractionError) as e:
        logger.error(f"[{correlation_id}] Error en el envío a SUNAT: {e}")
        return responder_error(
            correlation_id, ERR_ENVIO_SUNAT, str(e),
            status.HTTP_502_BAD_GATEWAY,
        )
    except ValueError as e:
        # Configuración incompleta (SUNAT_CONFIG)
        logger.error(f"[{correlation_id}] Configuración inválida: {e}")
        return responder_error(
            correlation_id, ERR_PROCESAMIENTO, str(e),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    logger.info(f"[{correlation_id}] Documento enviado exitosamente a SUNAT. CDR recibido.")

    return Response({
        'status': 'success',
        'correlationId': correlation_id,
        'documentId': result.document_id,
        'xmlPath': result.xml_path or '',
        'xmlHash': result.xml_hash,
        'processedAt': result.processed_at.strftime('%Y-%m-%dT%H:%M:%SZ'),
        'sunatCdr': result.cdr_xml,
        'cdrResponseCode': result.cdr_info.response_code,
        'cdrDescription': result.cdr_info.description,
    }, status=status.HTTP_200_OK)


@api_view(['GET'])
def health_check(request):
    """
    Endpoint de salud del sistema
    GET /health/
    """
    try:
        config = get_sunat_config()
        get_credentials(config)
    except (ValueError, CPEError) as e:
        logger.error(f"Error en health check: {e}")
        return Response({
            'success': False,
            'message': 'Error en el sistema',
            'status': 'unhealthy',
            'error': str(e),
        }, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response({
        'success': True,
        'message': 'API SUNAT funcionando correctamente',
        'status': 'healthy',
        'version': '1.0.0',
        'ruc': config.ruc,
        'endpoint': config.url,
        'features': {
            'xml_generation': True,
            'digital_signature': True,
            'sunat_integration': True,
            'cdr_processing': True,
        },
    }, status=status.HTTP_200_OK)
