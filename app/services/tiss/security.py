"""
TISS Security Service
Encrypts operator webservice credentials at rest and signs TISS documents
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from app.core.error_handling import AppException, ValidationException
from config import settings

logger = logging.getLogger(__name__)


class CredentialCipher:
    """Fernet encryption for operator passwords and tokens"""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize the cipher

        Args:
            encryption_key: urlsafe base64 Fernet key, defaults to TISS_ENCRYPTION_KEY
        """
        key = encryption_key or settings.TISS_ENCRYPTION_KEY
        if not key:
            logger.warning("TISS_ENCRYPTION_KEY not set, using generated key (not suitable for production)")
            key = Fernet.generate_key().decode()
        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self.fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        try:
            return self.fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Failed to decrypt operator credential, check TISS_ENCRYPTION_KEY")
            raise AppException("Credencial da operadora não pôde ser lida", status_code=500)


_cipher: Optional[CredentialCipher] = None


def get_credential_cipher() -> CredentialCipher:
    global _cipher
    if _cipher is None:
        _cipher = CredentialCipher()
    return _cipher


DS_NAMESPACE = "http://www.w3.org/2000/09/xmldsig#"
EXC_C14N_ALGORITHM = "http://www.w3.org/2001/10/xml-exc-c14n#"
ENVELOPED_ALGORITHM = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
SIGNATURE_ALGORITHM = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
DIGEST_ALGORITHM = "http://www.w3.org/2001/04/xmlenc#sha256"


def _ds(tag: str) -> str:
    return f"{{{DS_NAMESPACE}}}{tag}"


def _canonicalize(element) -> bytes:
    return etree.tostring(element, method="c14n", exclusive=True, with_comments=False)


def _digest(element) -> str:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(_canonicalize(element))
    return base64.b64encode(digest.finalize()).decode("ascii")


def _parse(xml_content: Union[str, bytes]):
    data = xml_content.encode("utf-8") if isinstance(xml_content, str) else xml_content
    return etree.fromstring(data, etree.XMLParser(resolve_entities=False, no_network=True))


class XMLSigner:
    """
    Enveloped XMLDSig signatures with the clinic e-CNPJ certificate

    The whole document is referenced (URI=""), canonicalized with exclusive
    C14N and signed with RSA-SHA256. The ds:Signature element is appended
    as the last child of mensagemTISS.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey, certificate: x509.Certificate):
        self.private_key = private_key
        self.certificate = certificate

    @classmethod
    def from_pem(cls, key_path: str, cert_path: str, password: Optional[str] = None) -> "XMLSigner":
        """Load a PEM private key and its PEM certificate"""
        with open(key_path, "rb") as f:
            private_key = serialization.load_pem_private_key(
                f.read(),
                password=password.encode("utf-8") if password else None,
            )
        with open(cert_path, "rb") as f:
            certificate = x509.load_pem_x509_certificate(f.read())
        return cls(private_key, certificate)

    @classmethod
    def from_pkcs12(cls, data: bytes, password: Optional[str] = None) -> "XMLSigner":
        """Load the key and certificate of an A1 certificate (.pfx/.p12)"""
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            data, password.encode("utf-8") if password else None
        )
        if private_key is None:
            raise ValidationException("Certificado sem chave privada")
        if certificate is None:
            raise ValidationException("Arquivo PFX sem certificado")
        return cls(private_key, certificate)

    @property
    def not_valid_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def certificate_info(self) -> Dict[str, str]:
        subject = self.certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        return {
            "subject": subject[0].value if subject else self.certificate.subject.rfc4514_string(),
            "serial_number": format(self.certificate.serial_number, "x"),
            "valid_until": self.not_valid_after.isoformat(),
        }

    def check_validity(self, now: Optional[datetime] = None) -> None:
        """
        Raises:
            ValidationException: certificate expired or not yet valid
        """
        now = now or datetime.now(timezone.utc)
        if now > self.certificate.not_valid_after_utc:
            logger.error(f"Signing certificate expired at {self.certificate.not_valid_after_utc.isoformat()}")
            raise ValidationException(
                "Certificado digital expirado",
                {"valid_until": self.certificate.not_valid_after_utc.isoformat()},
            )
        if now < self.certificate.not_valid_before_utc:
            raise ValidationException(
                "Certificado digital ainda não é válido",
                {"valid_from": self.certificate.not_valid_before_utc.isoformat()},
            )

    def sign(self, xml_content: Union[str, bytes], now: Optional[datetime] = None) -> str:
        """
        Sign a TISS document, replacing any previous signature

        Returns:
            The signed document, with an UTF-8 XML declaration
        """
        self.check_validity(now)
        root = _parse(xml_content)
        for previous in root.findall(_ds("Signature")):
            root.remove(previous)

        digest_value = _digest(root)

        signature = etree.SubElement(root, _ds("Signature"), nsmap={None: DS_NAMESPACE})
        signed_info = etree.SubElement(signature, _ds("SignedInfo"))
        etree.SubElement(signed_info, _ds("CanonicalizationMethod"), Algorithm=EXC_C14N_ALGORITHM)
        etree.SubElement(signed_info, _ds("SignatureMethod"), Algorithm=SIGNATURE_ALGORITHM)
        reference = etree.SubElement(signed_info, _ds("Reference"), URI="")
        transforms = etree.SubElement(reference, _ds("Transforms"))
        etree.SubElement(transforms, _ds("Transform"), Algorithm=ENVELOPED_ALGORITHM)
        etree.SubElement(transforms, _ds("Transform"), Algorithm=EXC_C14N_ALGORITHM)
        etree.SubElement(reference, _ds("DigestMethod"), Algorithm=DIGEST_ALGORITHM)
        etree.SubElement(reference, _ds("DigestValue")).text = digest_value

        # rsa-sha256 in XMLDSig is PKCS#1 v1.5
        signature_value = self.private_key.sign(_canonicalize(signed_info), padding.PKCS1v15(), hashes.SHA256())
        etree.SubElement(signature, _ds("SignatureValue")).text = base64.b64encode(signature_value).decode("ascii")

        key_info = etree.SubElement(signature, _ds("KeyInfo"))
        x509_data = etree.SubElement(key_info, _ds("X509Data"))
        etree.SubElement(x509_data, _ds("X509Certificate")).text = base64.b64encode(
            self.certificate.public_bytes(serialization.Encoding.DER)
        ).decode("ascii")

        logger.debug(f"Signed TISS document with certificate {format(self.certificate.serial_number, 'x')}")
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8").decode("utf-8")


def verify_xml_signature(xml_content: Union[str, bytes]) -> bool:
    """
    Verify an enveloped signature against the certificate it carries

    Returns:
        True if the document digest and the signature both match, False otherwise
    """
    try:
        root = _parse(xml_content)
    except etree.XMLSyntaxError:
        return False

    signature = root.find(_ds("Signature"))
    if signature is None:
        return False
    signed_info = signature.find(_ds("SignedInfo"))
    digest_value = signature.findtext(f"{_ds('SignedInfo')}/{_ds('Reference')}/{_ds('DigestValue')}")
    signature_value = signature.findtext(_ds("SignatureValue"))
    certificate_b64 = signature.findtext(f"{_ds('KeyInfo')}/{_ds('X509Data')}/{_ds('X509Certificate')}")
    if signed_info is None or not digest_value or not signature_value or not certificate_b64:
        return False

    certificate = x509.load_der_x509_certificate(base64.b64decode(certificate_b64))
    signed_info_c14n = _canonicalize(signed_info)

    root.remove(signature)
    if _digest(root) != digest_value.strip():
        logger.warning("XML signature digest mismatch, document changed after signing")
        return False

    try:
        certificate.public_key().verify(
            base64.b64decode(signature_value),
            signed_info_c14n,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature:
        logger.warning("XML signature value does not match the certificate")
        return False
    return True


def load_xml_signer() -> Optional[XMLSigner]:
    """
    Signer configured for this deployment

    TISS_CERT_PFX_PATH takes precedence over the TISS_CERT_PATH/TISS_KEY_PATH
    PEM pair. Documents go out unsigned when neither is set.
    """
    if settings.TISS_CERT_PFX_PATH:
        with open(settings.TISS_CERT_PFX_PATH, "rb") as f:
            return XMLSigner.from_pkcs12(f.read(), settings.TISS_CERT_PASSWORD)
    if settings.TISS_CERT_PATH and settings.TISS_KEY_PATH:
        return XMLSigner.from_pem(settings.TISS_KEY_PATH, settings.TISS_CERT_PATH, settings.TISS_CERT_PASSWORD)
    return None
