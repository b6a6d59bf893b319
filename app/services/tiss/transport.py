"""
TISS Transport
Sends mensagemTISS documents to operator webservices
"""

import base64
import logging
from typing import Dict, Optional, Protocol, Union

import httpx
from lxml import etree

from app.schemas.tiss import TransportResult, WebServiceConfig

logger = logging.getLogger(__name__)

SOAP_NAMESPACE = "http://www.w3.org/2003/05/soap-envelope"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


class TISSTransport(Protocol):
    """Anything able to deliver a TISS document to an operator"""

    async def send(self, xml_content: str, config: WebServiceConfig) -> TransportResult:
        ...


def build_soap_envelope(xml_content: Union[str, bytes]) -> str:
    """Wrap a TISS document in a SOAP 1.2 envelope"""
    data = xml_content.encode("utf-8") if isinstance(xml_content, str) else xml_content
    document = etree.fromstring(data.strip(), _PARSER)

    envelope = etree.Element(f"{{{SOAP_NAMESPACE}}}Envelope", nsmap={"soap": SOAP_NAMESPACE})
    etree.SubElement(envelope, f"{{{SOAP_NAMESPACE}}}Header")
    body = etree.SubElement(envelope, f"{{{SOAP_NAMESPACE}}}Body")
    body.append(document)
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8").decode("utf-8")


def build_auth_headers(config: WebServiceConfig) -> Dict[str, str]:
    headers = {}
    if config.auth_type == "bearer" and config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    elif config.auth_type == "basic" and config.username and config.password:
        credentials = f"{config.username}:{config.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        headers["Authorization"] = f"Basic {encoded}"
    return headers


def _first_text(root, *names: str) -> Optional[str]:
    for name in names:
        found = root.xpath(f".//*[local-name()='{name}']")
        if found:
            text = "".join(found[0].itertext()).strip()
            if text:
                return text
    return None


def parse_soap_response(response_xml: str) -> TransportResult:
    """
    Interpret an operator SOAP response

    A Fault or a response without numeroProtocolo is a failure.
    """
    try:
        root = etree.fromstring(
            response_xml.encode("utf-8"),
            _PARSER,
        )
    except etree.XMLSyntaxError:
        return TransportResult(
            success=False,
            codigo="PARSE_ERROR",
            mensagem="Resposta da operadora não é um XML válido",
            raw_response=response_xml,
        )

    if root.xpath(".//*[local-name()='Fault']"):
        mensagem = _first_text(root, "Text", "Reason", "faultstring") or "SOAP Fault"
        return TransportResult(success=False, codigo="SOAP_FAULT", mensagem=mensagem, raw_response=response_xml)

    protocolo = _first_text(root, "numeroProtocolo")
    mensagem = _first_text(root, "mensagem")
    codigo = _first_text(root, "codigo", "codigoGlosa")

    if protocolo:
        return TransportResult(
            success=True,
            protocolo=protocolo,
            mensagem=mensagem or "Lote recebido com sucesso",
            raw_response=response_xml,
        )

    if mensagem or codigo:
        return TransportResult(
            success=False,
            codigo=codigo or "UNKNOWN",
            mensagem=mensagem or "Erro no processamento",
            raw_response=response_xml,
        )

    return TransportResult(
        success=False,
        codigo="PARSE_ERROR",
        mensagem="Resposta da operadora não reconhecida",
        raw_response=response_xml,
    )


class SOAPTransport:
    """
    SOAP 1.2 over HTTP with httpx

    Connection errors and 5xx responses are retried up to
    config.max_tentativas times; every other outcome is returned as is.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, soap_action: str = "tissLoteGuias"):
        self.client = client
        self.soap_action = soap_action

    async def send(self, xml_content: str, config: WebServiceConfig) -> TransportResult:
        """
        Send a document to the operator

        Args:
            xml_content: mensagemTISS document
            config: Operator endpoint, credentials, timeout and attempts

        Returns:
            TransportResult with the protocol number on success
        """
        envelope = build_soap_envelope(xml_content)
        headers = {
            "Content-Type": "application/soap+xml; charset=utf-8",
            "SOAPAction": self.soap_action,
            **build_auth_headers(config),
        }

        if self.client is not None:
            return await self._send_with_retries(self.client, envelope, headers, config)
        async with httpx.AsyncClient(timeout=config.timeout) as client:
            return await self._send_with_retries(client, envelope, headers, config)

    async def _send_with_retries(
        self,
        client: httpx.AsyncClient,
        envelope: str,
        headers: Dict[str, str],
        config: WebServiceConfig,
    ) -> TransportResult:
        last_result = None
        for attempt in range(1, config.max_tentativas + 1):
            try:
                response = await client.post(
                    config.url,
                    content=envelope.encode("utf-8"),
                    headers=headers,
                    timeout=config.timeout,
                )
            except httpx.HTTPError as e:
                logger.warning(f"Webservice {config.url} attempt {attempt}/{config.max_tentativas} failed: {e}")
                last_result = TransportResult(
                    success=False,
                    codigo="CONNECTION_ERROR",
                    mensagem=f"Falha de conexão com a operadora: {e}",
                )
                continue

            if response.status_code >= 500:
                logger.warning(
                    f"Webservice {config.url} attempt {attempt}/{config.max_tentativas} "
                    f"returned HTTP {response.status_code}"
                )
                last_result = parse_soap_response(response.text)
                if last_result.success:
                    return last_result
                continue

            result = parse_soap_response(response.text)
            if response.status_code >= 400 and result.success:
                result = TransportResult(
                    success=False,
                    codigo=f"HTTP_{response.status_code}",
                    mensagem=f"Operadora respondeu HTTP {response.status_code}",
                    raw_response=response.text,
                )
            return result

        logger.error(f"Webservice {config.url} failed after {config.max_tentativas} attempt(s)")
        return last_result
