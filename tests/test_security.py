"""
Tests for credential encryption and XML signatures
"""
import pytest
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from lxml import etree

from app.core.error_handling import AppException, ValidationException
from app.services.tiss import security
from app.services.tiss.security import (
    DS_NAMESPACE,
    CredentialCipher,
    XMLSigner,
    load_xml_signer,
    verify_xml_signature,
)
from app.services.tiss.transport import build_soap_envelope

ANS = "http://www.ans.gov.br/padroes/tiss/schemas"

DOCUMENT = f"""<?xml version="1.0" encoding="UTF-8"?>
<ans:mensagemTISS xmlns:ans="{ANS}">
  <ans:cabecalho>
    <ans:identificacaoTransacao>
      <ans:tipoTransacao>ENVIO_LOTE_GUIAS</ans:tipoTransacao>
    </ans:identificacaoTransacao>
  </ans:cabecalho>
  <ans:epilogo>
    <ans:hash>5d41402abc4b2a76b9719d911017c592</ans:hash>
  </ans:epilogo>
</ans:mensagemTISS>"""


def _root(xml):
    return etree.fromstring(xml.encode("utf-8"))


@pytest.mark.unit
class TestCredentialCipher:
    def test_round_trip(self):
        cipher = CredentialCipher(Fernet.generate_key().decode())
        token = cipher.encrypt("s3nha")

        assert token != "s3nha"
        assert cipher.decrypt(token) == "s3nha"
        assert cipher.encrypt(None) is None

    def test_wrong_key(self):
        token = CredentialCipher(Fernet.generate_key().decode()).encrypt("s3nha")

        with pytest.raises(AppException) as exc:
            CredentialCipher(Fernet.generate_key().decode()).decrypt(token)
        assert exc.value.status_code == 500


@pytest.mark.unit
class TestXMLSigner:
    def test_signature_is_last_child(self, signer):
        root = _root(signer.sign(DOCUMENT))

        assert root[-1].tag == f"{{{DS_NAMESPACE}}}Signature"
        assert root[-2].tag == f"{{{ANS}}}epilogo"
        reference = root[-1].find(f"{{{DS_NAMESPACE}}}SignedInfo/{{{DS_NAMESPACE}}}Reference")
        assert reference.get("URI") == ""
        assert root[-1].findtext(f".//{{{DS_NAMESPACE}}}X509Certificate")

    def test_verifies(self, signer):
        assert verify_xml_signature(signer.sign(DOCUMENT))

    def test_tampered_document(self, signer):
        signed = signer.sign(DOCUMENT).replace("5d41402abc4b2a76b9719d911017c592", "0" * 32)
        assert not verify_xml_signature(signed)

    def test_tampered_signature_value(self, signer):
        root = _root(signer.sign(DOCUMENT))
        value = root.find(f".//{{{DS_NAMESPACE}}}SignatureValue")
        value.text = ("B" if value.text[0] == "A" else "A") + value.text[1:]

        assert not verify_xml_signature(etree.tostring(root))

    def test_unsigned_or_malformed(self):
        assert not verify_xml_signature(DOCUMENT)
        assert not verify_xml_signature("<ans:mensagemTISS")

    def test_resigning_replaces_signature(self, signer):
        signed = signer.sign(signer.sign(DOCUMENT))

        assert len(_root(signed).findall(f"{{{DS_NAMESPACE}}}Signature")) == 1
        assert verify_xml_signature(signed)

    def test_signature_survives_soap_envelope(self, signer):
        envelope = _root(build_soap_envelope(signer.sign(DOCUMENT)))
        body = envelope.find("{http://www.w3.org/2003/05/soap-envelope}Body")

        assert verify_xml_signature(etree.tostring(body[0]))

    def test_expired_certificate(self, signing_key, certificate_factory):
        now = datetime.now(timezone.utc)
        expired = XMLSigner(
            signing_key,
            certificate_factory(signing_key, valid_from=now - timedelta(days=400), valid_until=now - timedelta(days=1)),
        )

        with pytest.raises(ValidationException) as exc:
            expired.sign(DOCUMENT)
        assert exc.value.message == "Certificado digital expirado"

    def test_certificate_info(self, signer):
        info = signer.certificate_info()

        assert info["subject"] == "CLINICA TESTE:12345678000190"
        assert info["valid_until"] == signer.not_valid_after.isoformat()


@pytest.mark.unit
class TestLoadSigner:
    def test_unset(self, monkeypatch):
        monkeypatch.setattr(security.settings, "TISS_CERT_PFX_PATH", None)
        monkeypatch.setattr(security.settings, "TISS_CERT_PATH", None)
        monkeypatch.setattr(security.settings, "TISS_KEY_PATH", None)

        assert load_xml_signer() is None

    def test_pfx(self, monkeypatch, tmp_path, signing_key, certificate_factory):
        certificate = certificate_factory(signing_key)
        pfx = tmp_path / "clinica.pfx"
        pfx.write_bytes(pkcs12.serialize_key_and_certificates(
            b"clinica", signing_key, certificate, None, serialization.BestAvailableEncryption(b"senha"),
        ))
        monkeypatch.setattr(security.settings, "TISS_CERT_PFX_PATH", str(pfx))
        monkeypatch.setattr(security.settings, "TISS_CERT_PASSWORD", "senha")

        signer = load_xml_signer()

        assert signer.certificate == certificate
        assert verify_xml_signature(signer.sign(DOCUMENT))

    def test_pem_pair(self, monkeypatch, tmp_path, signing_key, certificate_factory):
        certificate = certificate_factory(signing_key)
        key_path = tmp_path / "clinica.key"
        cert_path = tmp_path / "clinica.crt"
        key_path.write_bytes(signing_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(b"senha"),
        ))
        cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
        monkeypatch.setattr(security.settings, "TISS_CERT_PFX_PATH", None)
        monkeypatch.setattr(security.settings, "TISS_CERT_PATH", str(cert_path))
        monkeypatch.setattr(security.settings, "TISS_KEY_PATH", str(key_path))
        monkeypatch.setattr(security.settings, "TISS_CERT_PASSWORD", "senha")

        signer = load_xml_signer()

        assert signer.certificate == certificate
        assert verify_xml_signature(signer.sign(DOCUMENT))
