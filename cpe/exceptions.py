# cpe/exceptions.py

"""
Errores del flujo de emisión de comprobantes electrónicos.

Cada error indica la etapa en la que ocurrió para distinguir
"nuestro documento/firma está mal" de "SUNAT rechazó o no respondió".
"""


class CPEError(Exception):
    """Error base del flujo de comprobantes"""

    stage = 'cpe'

    def __init__(self, message, stage=None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    def __str__(self):
        return f"[{self.stage}] {self.message}"


class BuildError(CPEError):
    """Datos del comprobante que no se pueden mapear a UBL"""

    stage = 'build'


class SigningError(CPEError):
    """Clave/certificado ilegible, placeholder ausente o firma inválida"""

    stage = 'sign'


class TranscodeError(CPEError):
    """Carácter no representable en el charset que espera SUNAT"""

    stage = 'encode'

    def __init__(self, message, character=None, position=None, context=None):
        super().__init__(message)
        self.character = character
        self.position = position
        self.context = context


class TransportError(CPEError):
    """Fallo de red o respuesta HTTP no exitosa"""

    stage = 'transport'

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransportTimeout(TransportError):
    pass


class TransportCancelled(TransportError):
    pass


class SoapFaultError(TransportError):
    """SUNAT respondió con un soap:Fault"""

    def __init__(self, fault_string, fault_code=None, status_code=None, body=None):
        super().__init__(
            f"SUNAT respondió con un error SOAP: {fault_string}",
            status_code=status_code,
            body=body,
        )
        self.fault_string = fault_string
        self.fault_code = fault_code


class ExtractionError(CPEError):
    """No se pudo obtener el CDR de la respuesta"""

    stage = 'extract'


class MalformedResponseError(ExtractionError):
    pass


class MissingApplicationResponseError(ExtractionError):
    pass


class InvalidPayloadEncodingError(ExtractionError):
    pass


class CorruptArchiveError(ExtractionError):
    pass


class MissingReceiptError(ExtractionError):
    pass
