# cpe/ubl.py

"""
Generación del árbol XML UBL 2.1 para SUNAT (factura, boleta y notas).

El árbol incluye un bloque ``ds:Signature`` vacío dentro de
``ext:UBLExtensions``; ``UBLDocument`` guarda referencias directas a sus nodos
para que la firma los complete sin volver a buscarlos por ruta.
"""

from decimal import Decimal, ROUND_HALF_UP
from xml.sax.saxutils import quoteattr

from lxml import etree

from .exceptions import BuildError
from .invoice import TIPO_NOTA_CREDITO, TIPO_NOTA_DEBITO, TIPOS_DOCUMENTO


NS_CAC = 'urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2'
NS_CBC = 'urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2'
NS_CCTS = 'urn:un:unece:uncefact:documentation:2'
NS_DS = 'http://www.w3.org/2000/09/xmldsig#'
NS_EXT = 'urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2'
NS_QDT = 'urn:oasis:names:specification:ubl:schema:xsd:QualifiedDatatypes-2'
NS_SAC = 'urn:sunat:names:specification:ubl:peru:schema:xsd:SunatAggregateComponents-1'
NS_UDT = 'urn:un:unece:uncefact:data:specification:UnqualifiedDataTypesSchemaModule:2'

# Algoritmos declarados en el SignedInfo
C14N_METHOD = 'http://www.w3.org/TR/2001/REC-xml-c14n-20010315'
SIGNATURE_METHOD = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha256'
DIGEST_METHOD = 'http://www.w3.org/2001/04/xmlenc#sha256'
ENVELOPED_TRANSFORM = 'http://www.w3.org/2000/09/xmldsig#enveloped-signature'

# (elemento raíz, namespace por defecto, línea, cantidad, total monetario)
DOCUMENT_PROFILES = {
    '01': ('Invoice', 'urn:oasis:names:specification:ubl:schema:xsd:Invoice-2',
           'InvoiceLine', 'InvoicedQuantity', 'LegalMonetaryTotal'),
    '03': ('Invoice', 'urn:oasis:names:specification:ubl:schema:xsd:Invoice-2',
           'InvoiceLine', 'InvoicedQuantity', 'LegalMonetaryTotal'),
    TIPO_NOTA_CREDITO: ('CreditNote', 'urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2',
                        'CreditNoteLine', 'CreditedQuantity', 'LegalMonetaryTotal'),
    TIPO_NOTA_DEBITO: ('DebitNote', 'urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2',
                       'DebitNoteLine', 'DebitedQuantity', 'RequestedMonetaryTotal'),
}

# Catálogo 05: código, nombre, tipo internacional, categoría UN/ECE 5305
TAX_SCHEMES = {
    'IGV': ('1000', 'IGV', 'VAT', 'S'),
    'EXO': ('9997', 'EXO', 'VAT', 'E'),
    'INA': ('9998', 'INA', 'FRE', 'O'),
    'EXP': ('9995', 'EXP', 'FRE', 'G'),
}

CATALOGO = 'urn:pe:gob:sunat:cpe:see:gem:catalogos:catalogo{}'
UNECE = 'United Nations Economic Commission for Europe'

TWO_PLACES = Decimal('0.01')
TEN_PLACES = Decimal('0.0000000001')


def nsmap_for(default_namespace):
    return {
        None: default_namespace,
        'cac': NS_CAC,
        'cbc': NS_CBC,
        'ccts': NS_CCTS,
        'ds': NS_DS,
        'ext': NS_EXT,
        'qdt': NS_QDT,
        'sac': NS_SAC,
        'udt': NS_UDT,
    }


def format_amount(value):
    """Importe monetario con exactamente dos decimales"""
    return f"{Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP):f}"


def format_quantity(value):
    """Entre dos y diez decimales (valor unitario y cantidad)"""
    text = f"{Decimal(value).quantize(TEN_PLACES, rounding=ROUND_HALF_UP):f}"
    integer, _, decimals = text.partition('.')
    decimals = decimals.rstrip('0').ljust(2, '0')
    return f"{integer}.{decimals}"


def tax_scheme_for(affectation):
    """Catálogo 07 (afectación del IGV) -> catálogo 05 (tributo)"""
    code = str(affectation or '')
    if code.startswith('1'):
        return TAX_SCHEMES['IGV']
    if code.startswith('2'):
        return TAX_SCHEMES['EXO']
    if code.startswith('3'):
        return TAX_SCHEMES['INA']
    if code == '40':
        return TAX_SCHEMES['EXP']
    raise BuildError(f"Código de afectación del IGV no soportado: '{affectation}'")


def _cbc(parent, name, text=None, **attrs):
    element = etree.SubElement(parent, f'{{{NS_CBC}}}{name}')
    for key, value in attrs.items():
        element.set(key, value)
    if text is not None:
        element.text = text
    return element


def _cac(parent, name):
    return etree.SubElement(parent, f'{{{NS_CAC}}}{name}')


def _ds(parent, name, **attrs):
    element = etree.SubElement(parent, f'{{{NS_DS}}}{name}')
    for key, value in attrs.items():
        element.set(key, value)
    return element


class UBLDocument:
    """Árbol UBL con referencias directas al bloque de firma"""

    def __init__(self, invoice, root, signature, signed_info, digest_value,
                 signature_value, x509_certificate, signature_uri):
        self.invoice = invoice
        self.root = root
        self.signature = signature
        self.signed_info = signed_info
        self.digest_value = digest_value
        self.signature_value = signature_value
        self.x509_certificate = x509_certificate
        self.signature_uri = signature_uri

    @property
    def tree(self):
        return self.root.getroottree()

    @property
    def is_signed(self):
        return bool(self.signature_value.text)

    def __repr__(self):
        estado = 'firmado' if self.is_signed else 'sin firma'
        return f"<UBLDocument {self.invoice.base_filename} ({estado})>"


def build_document(invoice, stylesheet=None):
    """
    Generar el árbol UBL 2.1 del comprobante.

    El orden de los elementos es el que exige el esquema de SUNAT; el bloque
    de firma queda vacío hasta que lo complete ``SignatureEngine``. Con
    ``stylesheet`` se agrega la instrucción xml-stylesheet antes de la raíz,
    dentro del documento que cubre la firma.
    """
    try:
        root_name, default_ns, line_name, quantity_name, total_name = DOCUMENT_PROFILES[invoice.document_type]
    except KeyError:
        raise BuildError(
            f"Tipo de documento inválido: '{invoice.document_type}'. "
            f"Debe ser uno de: {', '.join(TIPOS_DOCUMENTO)}"
        ) from None

    root = etree.Element(f'{{{default_ns}}}{root_name}', nsmap=nsmap_for(default_ns))

    # UBLExtensions DEBE ser el primer elemento
    ubl_extensions = etree.SubElement(root, f'{{{NS_EXT}}}UBLExtensions')
    ubl_extension = etree.SubElement(ubl_extensions, f'{{{NS_EXT}}}UBLExtension')
    extension_content = etree.SubElement(ubl_extension, f'{{{NS_EXT}}}ExtensionContent')
    placeholder = add_signature_placeholder(extension_content)

    add_header(root, invoice)
    if invoice.is_note:
        add_note_references(root, invoice)
    signature_uri = add_signature_reference(root, invoice)

    add_party(root, 'AccountingSupplierParty', invoice.issuer, establishment_code='0000')
    add_party(root, 'AccountingCustomerParty', invoice.recipient)

    add_tax_total(root, invoice)
    add_monetary_total(root, invoice, total_name)
    add_lines(root, invoice, line_name, quantity_name)
    if stylesheet:
        add_stylesheet(root, stylesheet)

    return UBLDocument(invoice=invoice, root=root, signature_uri=signature_uri, **placeholder)


def add_stylesheet(root, href):
    """Instrucción ``<?xml-stylesheet?>`` como hermana anterior de la raíz"""
    instruction = etree.ProcessingInstruction('xml-stylesheet', f'type="text/xsl" href={quoteattr(href)}')
    root.addprevious(instruction)
    return instruction


def add_signature_placeholder(extension_content):
    """Bloque ds:Signature con los algoritmos declarados y los valores vacíos"""
    signature = _ds(extension_content, 'Signature')

    signed_info = _ds(signature, 'SignedInfo')
    _ds(signed_info, 'CanonicalizationMethod', Algorithm=C14N_METHOD)
    _ds(signed_info, 'SignatureMethod', Algorithm=SIGNATURE_METHOD)
    reference = _ds(signed_info, 'Reference', URI='')
    transforms = _ds(reference, 'Transforms')
    _ds(transforms, 'Transform', Algorithm=ENVELOPED_TRANSFORM)
    _ds(reference, 'DigestMethod', Algorithm=DIGEST_METHOD)
    digest_value = _ds(reference, 'DigestValue')

    signature_value = _ds(signature, 'SignatureValue')

    key_info = _ds(signature, 'KeyInfo')
    x509_data = _ds(key_info, 'X509Data')
    x509_certificate = _ds(x509_data, 'X509Certificate')

    return {
        'signature': signature,
        'signed_info': signed_info,
        'digest_value': digest_value,
        'signature_value': signature_value,
        'x509_certificate': x509_certificate,
    }


def add_header(root, invoice):
    """Elementos básicos en orden estricto"""
    _cbc(root, 'UBLVersionID', '2.1')
    _cbc(root, 'CustomizationID', '2.0')

    if not invoice.is_note:
        _cbc(root, 'ProfileID', invoice.operation_type,
             schemeName='Tipo de Operacion',
             schemeAgencyName='PE:SUNAT',
             schemeURI=CATALOGO.format('51'))

    _cbc(root, 'ID', invoice.document_id)
    _cbc(root, 'IssueDate', invoice.issue_date.isoformat())

    if not invoice.is_note:
        _cbc(root, 'InvoiceTypeCode', invoice.document_type,
             listID=invoice.operation_type,
             listAgencyName='PE:SUNAT',
             listName='Tipo de Documento',
             listURI=CATALOGO.format('01'))

    for legend in invoice.legends:
        _cbc(root, 'Note', legend.value, languageLocaleID=legend.code)

    _cbc(root, 'DocumentCurrencyCode', invoice.currency,
         listID='ISO 4217 Alpha',
         listName='Currency',
         listAgencyName=UNECE)


def add_note_references(root, invoice):
    """Motivo y comprobante afectado de una nota de crédito/débito"""
    affected = invoice.affected_document
    if affected is None:
        raise BuildError(
            f"La nota {invoice.document_id} requiere el comprobante que modifica"
        )
    affected_id = f"{affected.series}-{affected.correlative}"

    discrepancy = _cac(root, 'DiscrepancyResponse')
    _cbc(discrepancy, 'ReferenceID', affected_id)
    _cbc(discrepancy, 'ResponseCode', affected.response_code)
    _cbc(discrepancy, 'Description', affected.description)

    billing_reference = _cac(root, 'BillingReference')
    document_reference = _cac(billing_reference, 'InvoiceDocumentReference')
    _cbc(document_reference, 'ID', affected_id)
    _cbc(document_reference, 'DocumentTypeCode', affected.document_type)


def add_signature_reference(root, invoice):
    """cac:Signature; la URI se completa al firmar"""
    issuer = invoice.issuer
    signature = _cac(root, 'Signature')
    _cbc(signature, 'ID', f"{issuer.document_number}-{invoice.series}-{invoice.correlative}")

    signatory = _cac(signature, 'SignatoryParty')
    identification = _cac(signatory, 'PartyIdentification')
    _cbc(identification, 'ID', issuer.document_number)
    party_name = _cac(signatory, 'PartyName')
    _cbc(party_name, 'Name', issuer.legal_name)

    attachment = _cac(signature, 'DigitalSignatureAttachment')
    external_reference = _cac(attachment, 'ExternalReference')
    return _cbc(external_reference, 'URI', '')


def add_party(root, party_type, data, establishment_code=None):
    """Emisor o receptor"""
    wrapper = _cac(root, party_type)
    party = _cac(wrapper, 'Party')

    identification = _cac(party, 'PartyIdentification')
    _cbc(identification, 'ID', data.document_number,
         schemeID=data.document_type,
         schemeName='Documento de Identidad',
         schemeAgencyName='PE:SUNAT',
         schemeURI=CATALOGO.format('06'))

    if data.commercial_name:
        party_name = _cac(party, 'PartyName')
        _cbc(party_name, 'Name', data.commercial_name)

    legal_entity = _cac(party, 'PartyLegalEntity')
    _cbc(legal_entity, 'RegistrationName', data.legal_name)

    address = data.address
    if address is None:
        return

    registration_address = _cac(legal_entity, 'RegistrationAddress')
    if address.ubigeo:
        _cbc(registration_address, 'ID', address.ubigeo,
             schemeAgencyName='PE:INEI', schemeName='Ubigeos')
    if establishment_code:
        _cbc(registration_address, 'AddressTypeCode', establishment_code,
             listAgencyName='PE:SUNAT', listName='Establecimientos anexos')
    if address.province:
        _cbc(registration_address, 'CityName', address.province)
    if address.region:
        _cbc(registration_address, 'CountrySubentity', address.region)
    if address.district:
        _cbc(registration_address, 'District', address.district)
    if address.line:
        address_line = _cac(registration_address, 'AddressLine')
        _cbc(address_line, 'Line', address.line)
    if address.country_code:
        country = _cac(registration_address, 'Country')
        _cbc(country, 'IdentificationCode', address.country_code,
             listID='ISO 3166-1', listAgencyName=UNECE, listName='Country')


def _tax_category(parent, scheme, percent=None, affectation=None):
    code, name, type_code, category = scheme
    tax_category = _cac(parent, 'TaxCategory')
    _cbc(tax_category, 'ID', category,
         schemeID='UN/ECE 5305',
         schemeName='Tax Category Identifier',
         schemeAgencyName=UNECE)
    if percent is not None:
        _cbc(tax_category, 'Percent', format_amount(percent))
    if affectation is not None:
        _cbc(tax_category, 'TaxExemptionReasonCode', affectation,
             listAgencyName='PE:SUNAT',
             listName='Afectacion del IGV',
             listURI=CATALOGO.format('07'))
    tax_scheme = _cac(tax_category, 'TaxScheme')
    _cbc(tax_scheme, 'ID', code, schemeID='UN/ECE 5153', schemeAgencyName='PE:SUNAT')
    _cbc(tax_scheme, 'Name', name)
    _cbc(tax_scheme, 'TaxTypeCode', type_code)


def _tax_subtotal(parent, currency, taxable, tax, scheme, percent=None, affectation=None):
    subtotal = _cac(parent, 'TaxSubtotal')
    _cbc(subtotal, 'TaxableAmount', format_amount(taxable), currencyID=currency)
    _cbc(subtotal, 'TaxAmount', format_amount(tax), currencyID=currency)
    _tax_category(subtotal, scheme, percent, affectation)


def tax_categories(invoice):
    """Acumula base imponible e impuesto por tributo, en orden de aparición"""
    if not invoice.lines:
        return [(TAX_SCHEMES['IGV'], invoice.taxable_amount, invoice.tax_amount)]

    totals = {}
    for item in invoice.lines:
        scheme = tax_scheme_for(item.tax_affectation)
        taxable, tax = totals.get(scheme, (Decimal('0'), Decimal('0')))
        totals[scheme] = (taxable + item.line_total, tax + item.tax_amount)
    return [(scheme, taxable, tax) for scheme, (taxable, tax) in totals.items()]


def add_tax_total(root, invoice):
    """TaxTotal global y un TaxSubtotal por tributo"""
    currency = invoice.currency
    tax_total = _cac(root, 'TaxTotal')
    _cbc(tax_total, 'TaxAmount', format_amount(invoice.tax_amount), currencyID=currency)
    for scheme, taxable, tax in tax_categories(invoice):
        _tax_subtotal(tax_total, currency, taxable, tax, scheme)


def add_monetary_total(root, invoice, total_name):
    currency = invoice.currency
    monetary_total = _cac(root, total_name)
    _cbc(monetary_total, 'LineExtensionAmount', format_amount(invoice.taxable_amount), currencyID=currency)
    _cbc(monetary_total, 'TaxInclusiveAmount', format_amount(invoice.total_amount), currencyID=currency)
    _cbc(monetary_total, 'PayableAmount', format_amount(invoice.total_amount), currencyID=currency)


def add_lines(root, invoice, line_name, quantity_name):
    """Una línea por item, en el orden recibido"""
    currency = invoice.currency
    for position, item in enumerate(invoice.lines, 1):
        line = _cac(root, line_name)
        _cbc(line, 'ID', str(position))

        _cbc(line, quantity_name, format_quantity(item.quantity),
             unitCode=item.unit_code,
             unitCodeListID='UN/ECE rec 20',
             unitCodeListAgencyName=UNECE)

        _cbc(line, 'LineExtensionAmount', format_amount(item.line_total), currencyID=currency)

        pricing_reference = _cac(line, 'PricingReference')
        alternative_price = _cac(pricing_reference, 'AlternativeConditionPrice')
        _cbc(alternative_price, 'PriceAmount', format_amount(item.unit_price), currencyID=currency)
        _cbc(alternative_price, 'PriceTypeCode', '01',
             listName='Tipo de Precio',
             listAgencyName='PE:SUNAT',
             listURI=CATALOGO.format('16'))

        tax_total = _cac(line, 'TaxTotal')
        _cbc(tax_total, 'TaxAmount', format_amount(item.tax_amount), currencyID=currency)
        _tax_subtotal(tax_total, currency, item.line_total, item.tax_amount,
                      tax_scheme_for(item.tax_affectation),
                      percent=item.tax_percent, affectation=item.tax_affectation)

        item_element = _cac(line, 'Item')
        _cbc(item_element, 'Description', item.description)
        if item.product_code:
            sellers_identification = _cac(item_element, 'SellersItemIdentification')
            _cbc(sellers_identification, 'ID', item.product_code)

        price = _cac(line, 'Price')
        _cbc(price, 'PriceAmount', format_quantity(item.unit_value), currencyID=currency)
