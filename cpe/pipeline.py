# cpe/pipeline.py

"""
Flujo completo de un comprobante: construir, firmar, serializar, enviar y
extraer el CDR.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .cdr import CdrInfo, declared_encoding, parse_cdr
from .encoding import content_hash, serialize_document
from .signing import SignatureEngine, get_credentials
from .soap_client import SUNATSoapClient
from .ubl import build_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedInvoice:
    invoice: object
    document: object
    xml_bytes: bytes
    xml_hash: str
    digest_value: str


@dataclass(frozen=True)
class ProcessResult:
    invoice: object
    xml_bytes: bytes
    xml_hash: str
    digest_value: str
    cdr_xml: str
    cdr_info: CdrInfo
    processed_at: datetime
    xml_path: Optional[str] = None
    cdr_path: Optional[str] = None

    @property
    def document_id(self):
        return self.invoice.document_id


class SUNATIntegration:
    """Clase para manejar la integración completa con SUNAT"""

    def __init__(self, config, credentials=None, soap_client=None):
        self.config = config
        self.credentials = credentials
        self.soap_client = soap_client or SUNATSoapClient(config)

    def get_signer(self):
        credentials = self.credentials or get_credentials(self.config)
        return SignatureEngine(credentials, signature_id=self.config.signature_id)

    def sign_invoice(self, invoice):
        """Construye, firma y serializa el comprobante (sin enviarlo)"""
        document = build_document(invoice, stylesheet=self.config.stylesheet)
        result = self.get_signer().sign(document)
        xml_bytes = serialize_document(document)
        return SignedInvoice(
            invoice=invoice,
            document=document,
            xml_bytes=xml_bytes,
            xml_hash=f"sha256:{content_hash(xml_bytes)}",
            digest_value=result.digest_value,
        )

    def process(self, invoice, cancel_event=None, correlation_id=None):
        """
        Firma el comprobante, lo envía con sendBill y devuelve el CDR.

        Los errores de cada etapa se propagan; solo el guardado local de
        archivos es de mejor esfuerzo.
        """
        prefix = f"[{correlation_id}] " if correlation_id else ""

        signed = self.sign_invoice(invoice)
        logger.info(f"{prefix}Comprobante {invoice.document_id} firmado ({signed.xml_hash})")
        xml_path = self._store(invoice.xml_filename, signed.xml_bytes, prefix)

        logger.info(f"{prefix}Intentando enviar documento a SUNAT...")
        cdr_xml = self.soap_client.send_bill(
            invoice.base_filename, signed.xml_bytes, cancel_event=cancel_event
        )
        cdr_info = parse_cdr(cdr_xml)
        logger.info(
            f"{prefix}CDR recibido para {invoice.document_id}: "
            f"{cdr_info.response_code} - {cdr_info.description}"
        )
        # Se guarda en el charset que declara el propio CDR
        cdr_bytes = cdr_xml.encode(declared_encoding(cdr_xml))
        cdr_path = self._store(invoice.cdr_filename, cdr_bytes, prefix)

        return ProcessResult(
            invoice=invoice,
            xml_bytes=signed.xml_bytes,
            xml_hash=signed.xml_hash,
            digest_value=signed.digest_value,
            cdr_xml=cdr_xml,
            cdr_info=cdr_info,
            processed_at=datetime.now(timezone.utc).replace(microsecond=0),
            xml_path=xml_path,
            cdr_path=cdr_path,
        )

    def _store(self, filename, content, prefix=""):
        if not self.config.output_dir:
            return None
        path = os.path.join(self.config.output_dir, filename)
        try:
            os.makedirs(self.config.output_dir, exist_ok=True)
            with open(path, 'wb') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"{prefix}Error guardando archivo {path}: {e}")
            return None
        logger.info(f"{prefix}Archivo guardado en {path}")
        return path
