"""
Delivery transports for notification channels.

HttpTransport performs webhook/REST calls with a shared aiohttp session;
SmtpTransport sends email with smtplib in a worker thread so the event
loop is never blocked. DeliveryTransport routes each request to the
matching transport.

Example:
    >>> transport = create_transport(smtp_host="smtp.example.com")
    >>> response = await transport.deliver(request)
    >>> await transport.close()
"""

import asyncio
import json
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional

import aiohttp
import structlog

from sentinel.detection.channels.base import (
    DeliveryRequest,
    DeliveryResponse,
    EmailRequest,
    HttpRequest,
)
from sentinel.errors import TransportError

logger = structlog.get_logger(__name__)


class HttpTransport:
    """
    aiohttp-backed transport for webhook and REST channels.

    Attributes:
        timeout_seconds: Total request timeout.

    Example:
        >>> transport = HttpTransport(timeout_seconds=10)
        >>> response = await transport.deliver(HttpRequest(url=url, json_body={}))
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "log-sentinel/1.0"},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("http_transport_session_closed")

    async def deliver(self, request: HttpRequest) -> DeliveryResponse:
        """
        Perform the HTTP call.

        Raises:
            TransportError: On connection errors, timeouts or status >= 400.
        """
        session = await self._ensure_session()
        auth = aiohttp.BasicAuth(*request.auth) if request.auth else None

        try:
            async with session.request(
                request.method,
                request.url,
                json=request.json_body,
                data=request.form,
                headers=request.headers or None,
                auth=auth,
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise TransportError(
                        f"HTTP {response.status}: {text[:200]}",
                        status=response.status,
                    )
                try:
                    body = json.loads(text) if text else None
                except ValueError:
                    body = text
                return DeliveryResponse(status=response.status, body=body)

        except aiohttp.ClientError as e:
            raise TransportError(f"HTTP request failed: {e}", cause=e) from e
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"HTTP request timeout after {self.timeout_seconds}s", cause=e
            ) from e


class SmtpTransport:
    """
    smtplib-backed email transport.

    Per-request SMTP settings override the defaults given here.

    Attributes:
        host: Default SMTP host.
        port: Default SMTP port.
        username: Default login user (no login when empty).
        password: Default login password.
        use_tls: Whether to STARTTLS.
        timeout_seconds: Socket timeout.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def _build_message(self, request: EmailRequest) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = request.sender
        msg["To"] = ", ".join(request.recipients)
        msg["Subject"] = request.subject
        msg["Date"] = formatdate(localtime=False, usegmt=True)
        msg["Message-ID"] = make_msgid(domain="log-sentinel")
        msg.set_content(request.text)
        msg.add_alternative(request.html, subtype="html")
        return msg

    def _send_sync(self, request: EmailRequest) -> str:
        msg = self._build_message(request)
        host = request.smtp_host or self.host
        port = request.smtp_port or self.port
        username = request.username or self.username
        password = request.password or self.password
        use_tls = self.use_tls if request.use_tls is None else request.use_tls

        with smtplib.SMTP(host, port, timeout=self.timeout_seconds) as server:
            server.ehlo()
            if use_tls:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if username:
                server.login(username, password or "")
            server.send_message(msg)
        return str(msg["Message-ID"])

    async def deliver(self, request: EmailRequest) -> DeliveryResponse:
        """
        Send the email from a worker thread.

        Raises:
            TransportError: On SMTP or socket errors.
        """
        try:
            message_id = await asyncio.to_thread(self._send_sync, request)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP send failed: {e}", cause=e) from e
        return DeliveryResponse(status=250, body={"message_id": message_id})

    async def close(self) -> None:
        return None


class DeliveryTransport:
    """
    Routes requests to the HTTP or SMTP transport.

    Example:
        >>> transport = DeliveryTransport(HttpTransport(), SmtpTransport())
    """

    def __init__(self, http: HttpTransport, smtp: SmtpTransport) -> None:
        self.http = http
        self.smtp = smtp

    async def deliver(self, request: DeliveryRequest) -> DeliveryResponse:
        if isinstance(request, EmailRequest):
            return await self.smtp.deliver(request)
        return await self.http.deliver(request)

    async def close(self) -> None:
        await self.http.close()
        await self.smtp.close()


def create_transport(
    timeout_seconds: float = 10.0,
    smtp_host: str = "localhost",
    smtp_port: int = 587,
    smtp_username: Optional[str] = None,
    smtp_password: Optional[str] = None,
    smtp_use_tls: bool = True,
) -> DeliveryTransport:
    """
    Factory function to create the default delivery transport.

    Args:
        timeout_seconds: HTTP and SMTP timeout.
        smtp_host: Default SMTP host.
        smtp_port: Default SMTP port.
        smtp_username: Default SMTP user.
        smtp_password: Default SMTP password.
        smtp_use_tls: Whether to STARTTLS.

    Returns:
        DeliveryTransport: Routing transport.
    """
    return DeliveryTransport(
        http=HttpTransport(timeout_seconds=timeout_seconds),
        smtp=SmtpTransport(
            host=smtp_host,
            port=smtp_port,
            username=smtp_username,
            password=smtp_password,
            use_tls=smtp_use_tls,
            timeout_seconds=timeout_seconds,
        ),
    )
