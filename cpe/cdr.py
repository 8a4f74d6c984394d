# cpe/cdr.py

"""
Extracción del CDR (Constancia de Recepción) de la respuesta SOAP de SUNAT.
"""

import base64
import binascii
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional

from lxml import etree

from .exceptions import (
    CorruptArchiveError,
    InvalidPayloadEncodingError,
    MalformedResponseError,
    MissingApplicationResponseError,
    MissingReceiptError,
    SoapFaultError,
)

XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>')
DECLARED_ENCODING = re.compile(rb'^\s*<\?xml[^>]*encoding=["\']([A-Za-z0-9._-]+)["\']')

# Namespaces comunes en CDR
CDR_NAMESPACES = {
    'cac': 'urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2',
    'cbc': 'urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2',
}


@dataclass(frozen=True)
class CdrInfo:
    cdr_id: Optional[str] = None
    response_code: Optional[str] = None
    description: Optional[str] = None
    referenced_document: Optional[str] = None
    response_date: Optional[str] = None
    response_time: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    @property
    def accepted(self):
        # ResponseCode 0 = aceptado; 2xxx/3xxx/4xxx = rechazo u observaciones
        return self.response_code == '0'


def _parse(content, description):
    if isinstance(content, str):
        content = XML_DECLARATION.sub('', content, count=1)
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(content, parser)
    except etree.XMLSyntaxError as e:
        raise MalformedResponseError(f"{description} mal formado: {e}") from e


def _local(root, name):
    return root.xpath(f'//*[local-name()="{name}"]')


def find_fault(root):
    """(faultcode, faultstring) si la respuesta es un soap:Fault"""
    fault_strings = _local(root, 'faultstring')
    if not fault_strings:
        return None
    fault_codes = _local(root, 'faultcode')
    fault_code = (fault_codes[0].text or '').strip() if fault_codes else None
    return fault_code, (fault_strings[0].text or '').strip()


def soap_fault(response_bytes):
    """Como ``find_fault`` pero sobre bytes; None si no es XML"""
    try:
        root = _parse(response_bytes, 'Respuesta SOAP')
    except MalformedResponseError:
        return None
    return find_fault(root)


def declared_encoding(content, default='utf-8'):
    if isinstance(content, str):
        content = content[:200].encode('ascii', 'ignore')
    match = DECLARED_ENCODING.match(content)
    return match.group(1).decode('ascii') if match else default


def extract_cdr(response_bytes):
    """
    Devuelve el texto del primer XML dentro del ZIP de ``applicationResponse``.
    """
    root = _parse(response_bytes, 'XML de respuesta SOAP')

    fault = find_fault(root)
    if fault is not None:
        fault_code, fault_string = fault
        raise SoapFaultError(fault_string, fault_code=fault_code, body=response_bytes)

    nodes = _local(root, 'applicationResponse')
    if not nodes:
        raise MissingApplicationResponseError(
            "No se encontró el nodo <applicationResponse> en la respuesta"
        )
    payload = ''.join((nodes[0].text or '').split())
    if not payload:
        raise InvalidPayloadEncodingError("El nodo <applicationResponse> está vacío")

    try:
        cdr_zip = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadEncodingError(f"No se pudo decodificar el CDR en Base64: {e}") from e

    try:
        zip_file = zipfile.ZipFile(BytesIO(cdr_zip), 'r')
    except zipfile.BadZipFile as e:
        raise CorruptArchiveError(f"No se pudo leer el ZIP del CDR: {e}") from e

    with zip_file:
        for info in zip_file.infolist():
            if not info.filename.lower().endswith('.xml'):
                continue
            try:
                content = zip_file.read(info)
            except (zipfile.BadZipFile, zlib.error, OSError) as e:
                raise CorruptArchiveError(f"No se pudo leer {info.filename} del ZIP del CDR: {e}") from e
            try:
                return content.decode(declared_encoding(content))
            except (UnicodeDecodeError, LookupError) as e:
                raise CorruptArchiveError(f"El CDR {info.filename} no se pudo decodificar: {e}") from e

        raise MissingReceiptError(
            "No se encontró ningún archivo XML dentro del ZIP del CDR "
            f"(archivos: {', '.join(zip_file.namelist()) or 'ninguno'})"
        )


def parse_cdr(cdr_xml):
    """Extrae el código de respuesta, descripción y notas del CDR"""
    root = _parse(cdr_xml, 'CDR')
    ns = CDR_NAMESPACES

    def text(path):
        element = root.find(path, ns)
        return element.text.strip() if element is not None and element.text else None

    return CdrInfo(
        cdr_id=text('cbc:ID'),
        response_code=text('.//cac:DocumentResponse/cac:Response/cbc:ResponseCode'),
        description=text('.//cac:DocumentResponse/cac:Response/cbc:Description'),
        referenced_document=text('.//cac:DocumentResponse/cac:DocumentReference/cbc:ID'),
        response_date=text('cbc:ResponseDate'),
        response_time=text('cbc:ResponseTime'),
        notes=[note.text for note in root.findall('cbc:Note', ns) if note.text],
    )
