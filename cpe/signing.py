# cpe/signing.py

"""
Firma digital XMLDSig enveloped del comprobante UBL.

Algoritmos fijos (los mismos que declara el placeholder del documento):

- CanonicalizationMethod: C14N 1.0 inclusiva
- SignatureMethod: RSA-SHA256 (PKCS#1 v1.5, determinista)
- DigestMethod: SHA-256
- Una sola Reference ``URI=""`` con el transform enveloped-signature

El método de canonicalización se lee del nodo ``CanonicalizationMethod`` del
SignedInfo, así el método aplicado nunca difiere del declarado.
"""

import base64
import binascii
import hashlib
import logging
import threading
from dataclasses import dataclass

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from lxml import etree
from signxml import XMLVerifier
from signxml.exceptions import SignXMLException

from .exceptions import SigningError
from .ubl import C14N_METHOD, DIGEST_METHOD, ENVELOPED_TRANSFORM, NS_DS, SIGNATURE_METHOD

logger = logging.getLogger(__name__)

# Algorithm -> opciones de lxml; cualquier otro método se rechaza
C14N_OPTIONS = {
    C14N_METHOD: {'exclusive': False, 'with_comments': False},
}

PKCS12_SUFFIXES = ('.pfx', '.p12')


@dataclass(frozen=True)
class Credentials:
    """Clave privada RSA y certificado X.509 del emisor (solo lectura)"""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def certificate_der(self):
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def certificate_pem(self):
        return self.certificate.public_bytes(serialization.Encoding.PEM)


@dataclass(frozen=True)
class SignatureResult:
    document: object
    digest_value: str
    signature_value: str
    signature_bytes: bytes


def _read_file(path, description):
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise SigningError(f"No se pudo leer {description} '{path}': {e}") from e


def _password_bytes(password):
    if password is None or password == '':
        return None
    if isinstance(password, bytes):
        return password
    return password.encode()


def _load_certificate(data):
    try:
        if b'-----BEGIN' in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise SigningError(f"Certificado X.509 inválido: {e}") from e


def extraer_clave_certificado_pfx(pfx_path, password):
    """Extrae la clave privada y el certificado de un archivo PFX/P12"""
    pfx_data = _read_file(pfx_path, 'el certificado PFX')
    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            pfx_data, _password_bytes(password)
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"No se pudo abrir el PFX '{pfx_path}': {e}") from e

    if private_key is None:
        raise SigningError(f"El PFX '{pfx_path}' no contiene clave privada")
    if certificate is None:
        raise SigningError(f"El PFX '{pfx_path}' no contiene certificado")
    return private_key, certificate


def load_credentials(cert_path, cert_password=None, key_path=None, key_password=None):
    """
    Carga clave y certificado desde un PFX/P12 o desde archivos PEM separados.

    Falla cerrado: cualquier material ausente o ilegible lanza ``SigningError``.
    """
    if not cert_path:
        raise SigningError("Certificado no especificado. Configure SUNAT_CERT_PATH")

    if key_path is None or str(cert_path).lower().endswith(PKCS12_SUFFIXES):
        private_key, certificate = extraer_clave_certificado_pfx(cert_path, cert_password)
    else:
        certificate = _load_certificate(_read_file(cert_path, 'el certificado'))
        key_data = _read_file(key_path, 'la clave privada')
        try:
            private_key = serialization.load_pem_private_key(
                key_data, password=_password_bytes(key_password)
            )
        except (ValueError, TypeError) as e:
            raise SigningError(f"Clave privada inválida '{key_path}': {e}") from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(f"Se requiere una clave RSA, se recibió {type(private_key).__name__}")

    if certificate.public_key().public_numbers() != private_key.public_key().public_numbers():
        raise SigningError("El certificado no corresponde a la clave privada")

    logger.info(f"Certificado cargado: {certificate.subject.rfc4514_string()}")
    return Credentials(private_key=private_key, certificate=certificate)


_credentials_cache = {}
_credentials_lock = threading.Lock()


def get_credentials(config):
    """Carga clave y certificado una sola vez por configuración (cache)"""
    cache_key = (config.cert_path, config.key_path)
    credentials = _credentials_cache.get(cache_key)
    if credentials is None:
        with _credentials_lock:
            credentials = _credentials_cache.get(cache_key)
            if credentials is None:
                credentials = load_credentials(
                    config.cert_path,
                    config.cert_password,
                    config.key_path,
                    config.key_password,
                )
                _credentials_cache[cache_key] = credentials
    return credentials


def canonicalize(node, method=C14N_METHOD):
    """
    Forma canónica (bytes UTF-8) según ``method``.

    ``node`` puede ser un elemento o un ``ElementTree``; en el segundo caso se
    incluyen las instrucciones de procesamiento fuera de la raíz.
    """
    try:
        options = C14N_OPTIONS[method]
    except KeyError:
        raise SigningError(f"Método de canonicalización no soportado: {method}") from None
    return etree.tostring(node, method='c14n', **options)


def declared_algorithm(signed_info, name):
    node = signed_info.find(f'{{{NS_DS}}}{name}')
    if node is None or not node.get('Algorithm'):
        raise SigningError(f"SignedInfo sin ds:{name}")
    return node.get('Algorithm')


def _in_tree(element, root):
    return any(ancestor is root for ancestor in element.iterancestors())


class SignatureEngine:
    """Completa el bloque ds:Signature de un ``UBLDocument``"""

    def __init__(self, credentials, signature_id="SignatureSP"):
        if credentials is None:
            raise SigningError("No hay credenciales de firma")
        self.credentials = credentials
        self.signature_id = signature_id

    def sign(self, document):
        if document.signature is None or not _in_tree(document.signature, document.root):
            raise SigningError("No se encontró el nodo ds:Signature en el documento")
        if document.digest_value.text or document.signature_value.text or document.x509_certificate.text:
            raise SigningError(f"El documento {document.invoice.base_filename} ya está firmado")

        method = declared_algorithm(document.signed_info, 'CanonicalizationMethod')
        if method not in C14N_OPTIONS:
            raise SigningError(f"Método de canonicalización no soportado: {method}")
        if declared_algorithm(document.signed_info, 'SignatureMethod') != SIGNATURE_METHOD:
            raise SigningError("SignatureMethod declarado no soportado")
        digest_method = document.digest_value.getparent().find(f'{{{NS_DS}}}DigestMethod')
        if digest_method is None or digest_method.get('Algorithm') != DIGEST_METHOD:
            raise SigningError("DigestMethod declarado no soportado")

        # El Id y la URI que lo referencia quedan fijos antes del digest
        document.signature.set('Id', self.signature_id)
        document.signature_uri.text = f"#{self.signature_id}"

        digest = hashlib.sha256(self.canonicalize_enveloped(document, method)).digest()
        digest_value = base64.b64encode(digest).decode('ascii')
        document.digest_value.text = digest_value
        document.x509_certificate.text = base64.b64encode(self.credentials.certificate_der).decode('ascii')

        signed_info_c14n = canonicalize(document.signed_info, method)
        signature_bytes = self.credentials.private_key.sign(
            signed_info_c14n, padding.PKCS1v15(), hashes.SHA256()
        )
        signature_value = base64.b64encode(signature_bytes).decode('ascii')
        document.signature_value.text = signature_value

        logger.info(f"Documento {document.invoice.base_filename} firmado, DigestValue={digest_value}")
        return SignatureResult(
            document=document,
            digest_value=digest_value,
            signature_value=signature_value,
            signature_bytes=signature_bytes,
        )

    @staticmethod
    def canonicalize_enveloped(document, method=C14N_METHOD):
        """Documento completo canonicalizado sin el propio ds:Signature (transform enveloped)"""
        signature = document.signature
        parent = signature.getparent()
        index = parent.index(signature)
        tail = signature.tail
        parent.remove(signature)
        try:
            return canonicalize(document.tree, method)
        finally:
            parent.insert(index, signature)
            signature.tail = tail


def _ds_find(parent, path):
    node = parent.find(path.replace('ds:', f'{{{NS_DS}}}'))
    if node is None:
        raise SigningError(f"Firma sin {path}")
    return node


def _b64_text(node, name):
    try:
        return base64.b64decode(''.join((node.text or '').split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"{name} no es Base64 válido: {e}") from e


def _remove_enveloped(signature):
    """Quita ds:Signature del árbol conservando el texto que le sigue"""
    parent = signature.getparent()
    previous = signature.getprevious()
    if signature.tail:
        if previous is not None:
            previous.tail = (previous.tail or '') + signature.tail
        else:
            parent.text = (parent.text or '') + signature.tail
    parent.remove(signature)


def verify_document(signed_xml, certificate):
    """
    Verifica un documento firmado usando solo el certificado.

    La Reference ``URI=""`` cubre el documento completo sin comentarios,
    incluidas las instrucciones de procesamiento fuera de la raíz (la hoja de
    estilo). signxml digiere solo el elemento raíz, así que se usa como
    segunda verificación cuando no hay nada fuera de la raíz.

    ``certificate`` puede ser un ``x509.Certificate`` o su PEM.
    """
    if not isinstance(certificate, x509.Certificate):
        if isinstance(certificate, str):
            certificate = certificate.encode('ascii')
        certificate = _load_certificate(certificate)

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(signed_xml, parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise SigningError(f"El documento firmado no es XML válido: {e}") from e
    outside_root = root.getprevious() is not None or root.getnext() is not None

    signatures = root.findall(f'.//{{{NS_DS}}}Signature')
    if len(signatures) != 1:
        raise SigningError(f"Se esperaba un ds:Signature, se encontraron {len(signatures)}")
    signature = signatures[0]
    signed_info = _ds_find(signature, 'ds:SignedInfo')

    method = declared_algorithm(signed_info, 'CanonicalizationMethod')
    if declared_algorithm(signed_info, 'SignatureMethod') != SIGNATURE_METHOD:
        raise SigningError("SignatureMethod declarado no soportado")
    references = signed_info.findall(f'{{{NS_DS}}}Reference')
    if len(references) != 1 or references[0].get('URI') != '':
        raise SigningError('Se esperaba una única Reference con URI=""')
    reference = references[0]
    transforms = [t.get('Algorithm') for t in reference.iterfind(f'{{{NS_DS}}}Transforms/{{{NS_DS}}}Transform')]
    if transforms != [ENVELOPED_TRANSFORM]:
        raise SigningError(f"Transforms no soportados: {transforms}")
    if _ds_find(reference, 'ds:DigestMethod').get('Algorithm') != DIGEST_METHOD:
        raise SigningError("DigestMethod declarado no soportado")

    expected_digest = _b64_text(_ds_find(reference, 'ds:DigestValue'), 'DigestValue')
    signature_bytes = _b64_text(_ds_find(signature, 'ds:SignatureValue'), 'SignatureValue')

    try:
        certificate.public_key().verify(
            signature_bytes, canonicalize(signed_info, method), padding.PKCS1v15(), hashes.SHA256()
        )
    except InvalidSignature as e:
        raise SigningError("La firma del documento no es válida: SignatureValue no corresponde") from e

    _remove_enveloped(signature)
    digest = hashlib.sha256(canonicalize(root.getroottree(), method)).digest()
    if digest != expected_digest:
        raise SigningError("La firma del documento no es válida: DigestValue no corresponde")

    if not outside_root:
        try:
            XMLVerifier().verify(
                signed_xml,
                x509_cert=certificate.public_bytes(serialization.Encoding.PEM).decode('ascii'),
            )
        except SignXMLException as e:
            raise SigningError(f"La firma del documento no es válida: {e}") from e
    return digest
