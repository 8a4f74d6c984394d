# cpe/soap_client.py

import base64
import logging
import time
import zipfile
from io import BytesIO
from xml.sax.saxutils import escape

import requests

from .cdr import extract_cdr, soap_fault
from .exceptions import SoapFaultError, TransportCancelled, TransportError, TransportTimeout

logger = logging.getLogger(__name__)

# Sesión compartida por todos los clientes (pool de conexiones de requests)
_session = requests.Session()

CHUNK_SIZE = 8192

SOAP_TEMPLATE = (
    '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns:ser="http://service.sunat.gob.pe" '
    'xmlns:wsse="http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd">'
    '<soapenv:Header><wsse:Security><wsse:UsernameToken>'
    '<wsse:Username>{username}</wsse:Username>'
    '<wsse:Password>{password}</wsse:Password>'
    '</wsse:UsernameToken></wsse:Security></soapenv:Header>'
    '<soapenv:Body><ser:sendBill>'
    '<fileName>{file_name}</fileName>'
    '<contentFile>{content_file}</contentFile>'
    '</ser:sendBill></soapenv:Body></soapenv:Envelope>'
)


class SUNATSoapClient:
    """Cliente SOAP para envío de comprobantes electrónicos a SUNAT"""

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or _session

    @staticmethod
    def build_zip(xml_filename, xml_bytes):
        """ZIP en memoria con una sola entrada: el XML firmado"""
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(xml_filename, xml_bytes)
        return buffer.getvalue()

    def get_soap_envelope(self, zip_filename, zip_bytes):
        """Genera el sobre SOAP según especificaciones SUNAT"""
        return SOAP_TEMPLATE.format(
            username=escape(self.config.username),
            password=escape(self.config.password),
            file_name=escape(zip_filename),
            content_file=base64.b64encode(zip_bytes).decode('ascii'),
        )

    def build_envelope(self, zip_filename, zip_bytes):
        return self.get_soap_envelope(zip_filename, zip_bytes).encode('utf-8')

    def send_bill(self, base_filename, xml_bytes, cancel_event=None):
        """
        Envía el comprobante firmado con sendBill y devuelve el XML del CDR.

        Un solo intento, sin reintentos. ``cancel_event`` (``threading.Event``)
        se revisa antes del POST y entre cada bloque leído de la respuesta.
        """
        zip_filename = f"{base_filename}.zip"
        zip_bytes = self.build_zip(f"{base_filename}.xml", xml_bytes)
        envelope = self.build_envelope(zip_filename, zip_bytes)

        headers = {
            'Content-Type': 'text/xml;charset=UTF-8',
            'SOAPAction': 'urn:sendBill',
        }

        self._check_cancelled(cancel_event, zip_filename)
        logger.info(f"Enviando comprobante a SUNAT: {zip_filename} ({len(zip_bytes)} bytes)")

        deadline = time.monotonic() + self.config.timeout
        try:
            response = self.session.post(
                self.config.url,
                data=envelope,
                headers=headers,
                timeout=(self.config.connect_timeout, self.config.timeout),
                verify=self.config.verify_tls,
                stream=True,
            )
        except requests.exceptions.Timeout as e:
            raise TransportTimeout(f"Tiempo de espera agotado enviando {zip_filename}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Error de conexión con SUNAT: {e}") from e

        body = self._read_body(response, zip_filename, deadline, cancel_event)
        logger.info(f"Respuesta SUNAT - Status: {response.status_code}")

        if response.status_code != 200:
            fault = soap_fault(body)
            if fault is not None:
                fault_code, fault_string = fault
                raise SoapFaultError(
                    fault_string,
                    fault_code=fault_code,
                    status_code=response.status_code,
                    body=body,
                )
            raise TransportError(
                f"Error HTTP {response.status_code}: {body[:500].decode('utf-8', 'replace')}",
                status_code=response.status_code,
                body=body,
            )

        return extract_cdr(body)

    def _read_body(self, response, zip_filename, deadline, cancel_event):
        chunks = []
        with response:
            try:
                for chunk in response.iter_content(CHUNK_SIZE):
                    self._check_cancelled(cancel_event, zip_filename)
                    if time.monotonic() > deadline:
                        raise TransportTimeout(
                            f"Tiempo de espera agotado leyendo la respuesta de {zip_filename}",
                            status_code=response.status_code,
                        )
                    chunks.append(chunk)
            except requests.exceptions.Timeout as e:
                raise TransportTimeout(f"Tiempo de espera agotado leyendo la respuesta: {e}") from e
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Error leyendo la respuesta de SUNAT: {e}") from e
        return b''.join(chunks)

    @staticmethod
    def _check_cancelled(cancel_event, zip_filename):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Envío de {zip_filename} cancelado")
            raise TransportCancelled(f"Envío de {zip_filename} cancelado")
