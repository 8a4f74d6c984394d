"""
Pruebas de la serialización en ISO-8859-1
"""

import base64
import hashlib

import pytest
from lxml import etree

from conftest import make_invoice
from cpe.encoding import content_hash, serialize_document, transcode, xml_prologue
from cpe.exceptions import SigningError, TranscodeError
from cpe.invoice import Party
from cpe.signing import SignatureEngine, verify_document
from cpe.ubl import NS_DS, build_document


def _firmado(credentials, invoice=None, **kwargs):
    document = build_document(invoice or make_invoice(), **kwargs)
    SignatureEngine(credentials).sign(document)
    return serialize_document(document)


def test_prologo(credentials):
    signed = _firmado(credentials)
    assert signed.startswith(b'<?xml version="1.0" encoding="ISO-8859-1" standalone="no"?>\n<Invoice ')
    assert xml_prologue('UTF-8') == '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n'


def test_prologo_con_hoja_de_estilos(credentials):
    signed = _firmado(credentials, stylesheet='factura.xsl')
    assert signed.splitlines()[:2] == [
        b'<?xml version="1.0" encoding="ISO-8859-1" standalone="no"?>',
        b'<?xml-stylesheet type="text/xsl" href="factura.xsl"?>',
    ]


def test_hoja_de_estilos_dentro_del_digest(credentials):
    """URI="" cubre todo el documento: la instrucción xml-stylesheet entra en el DigestValue"""
    signed = _firmado(credentials, stylesheet='factura.xsl')
    verify_document(signed, credentials.certificate)

    root = etree.fromstring(signed)
    declared = root.findtext('.//ds:DigestValue', namespaces={'ds': NS_DS})
    signature = root.find('.//ds:Signature', {'ds': NS_DS})
    signature.getparent().remove(signature)

    whole_document = etree.tostring(root.getroottree(), method='c14n')
    assert whole_document.startswith(b'<?xml-stylesheet type="text/xsl" href="factura.xsl"?>\n<Invoice ')
    assert base64.b64encode(hashlib.sha256(whole_document).digest()).decode('ascii') == declared

    root_only = etree.tostring(root, method='c14n')
    assert base64.b64encode(hashlib.sha256(root_only).digest()).decode('ascii') != declared


def test_hoja_de_estilos_modificada_invalida_la_firma(credentials):
    signed = _firmado(credentials, stylesheet='factura.xsl')
    tampered = signed.replace(b'href="factura.xsl"', b'href="otra.xsl"')
    with pytest.raises(SigningError):
        verify_document(tampered, credentials.certificate)

    without_stylesheet = signed.replace(b'<?xml-stylesheet type="text/xsl" href="factura.xsl"?>\n', b'')
    with pytest.raises(SigningError):
        verify_document(without_stylesheet, credentials.certificate)


def test_caracteres_latinos(credentials):
    """Ñ y tildes se codifican en un solo byte y la firma sigue siendo válida"""
    recipient = Party(document_type='6', document_number='20605145648',
                      legal_name='COMPAÑÍA DE TRANSPORTES SEÑOR DE MURUHUAY')
    signed = _firmado(credentials, make_invoice(recipient=recipient))

    assert 'COMPAÑÍA'.encode('iso-8859-1') in signed
    assert 'COMPAÑÍA'.encode('utf-8') not in signed
    root = etree.fromstring(signed)
    assert root.xpath('string((//*[local-name()="RegistrationName"])[2])') == 'COMPAÑÍA DE TRANSPORTES SEÑOR DE MURUHUAY'
    verify_document(signed, credentials.certificate)


def test_caracter_no_representable(credentials):
    recipient = Party(document_type='6', document_number='20605145648',
                      legal_name='CLIENTE € S.A.C.')
    with pytest.raises(TranscodeError) as exc_info:
        _firmado(credentials, make_invoice(recipient=recipient))

    error = exc_info.value
    assert error.stage == 'encode'
    assert error.character == '€'
    assert 'CLIENTE' in error.context


def test_transcode():
    assert transcode('año') == b'a\xf1o'
    with pytest.raises(TranscodeError) as exc_info:
        transcode('abc€def')
    assert exc_info.value.position == 3
    with pytest.raises(TranscodeError):
        transcode('abc', 'charset-inexistente')


def test_content_hash(credentials):
    signed = _firmado(credentials)
    assert content_hash(signed) == hashlib.sha256(signed).hexdigest()
    assert len(content_hash(signed)) == 64
