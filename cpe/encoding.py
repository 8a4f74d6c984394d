# cpe/encoding.py

"""
Serialización del documento firmado y conversión al charset de SUNAT.
"""

import hashlib

from .exceptions import SigningError, TranscodeError
from .signing import canonicalize, declared_algorithm

LEGACY_CHARSET = 'ISO-8859-1'


def xml_prologue(charset=LEGACY_CHARSET):
    return f'<?xml version="1.0" encoding="{charset}" standalone="no"?>\n'


def transcode(text, charset=LEGACY_CHARSET):
    """
    Codifica ``text`` en ``charset`` sin sustituir caracteres.

    El primer carácter fuera del repertorio lanza ``TranscodeError`` con su
    posición y el contenido que lo rodea.
    """
    try:
        return text.encode(charset)
    except UnicodeEncodeError as e:
        character = e.object[e.start]
        context = e.object[max(0, e.start - 30):e.end + 30]
        raise TranscodeError(
            f"Carácter {character!r} (U+{ord(character):04X}) no representable en {charset} "
            f"en la posición {e.start}: ...{context}...",
            character=character,
            position=e.start,
            context=context,
        ) from e
    except LookupError as e:
        raise TranscodeError(f"Charset desconocido: {charset}") from e


def serialize_document(document, charset=LEGACY_CHARSET):
    """
    Bytes finales: declaración XML + documento firmado en forma canónica.

    La hoja de estilo, si el documento la tiene, sale de la forma canónica del
    árbol: es la misma instrucción que cubre el DigestValue.
    """
    if not document.is_signed:
        raise SigningError(f"El documento {document.invoice.base_filename} no está firmado")

    method = declared_algorithm(document.signed_info, 'CanonicalizationMethod')
    canonical = canonicalize(document.tree, method).decode('utf-8')
    return transcode(xml_prologue(charset) + canonical, charset)


def content_hash(data):
    """SHA-256 hexadecimal de los bytes firmados"""
    return hashlib.sha256(data).hexdigest()
