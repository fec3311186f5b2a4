"""JSON codec for the service's request/response protocol."""

import json
import logging
from collections.abc import Mapping
from typing import Optional, Union

from ..errors import DecodeError, EncodeError
from .messages import CloseNotification, CloseSignal, RawFrame, Request, Response

logger = logging.getLogger(__name__)

Frame = Union[str, bytes, CloseSignal]
Message = Union[Response, CloseNotification, RawFrame]


class WireCodec:
    """
    Encodes requests and decodes incoming frames into typed messages.

    Decoding is resolved once here: everything past the codec works with
    ``Response``, ``CloseNotification`` or ``RawFrame`` instead of loose JSON.
    Unknown members are ignored so newer server payloads still decode.
    """

    def encode(self, request: Request) -> str:
        """
        Encode a request as a JSON text frame.

        Raises:
            EncodeError: If the id is not an integer or params is not a JSON object
        """
        if not isinstance(request.id, int) or isinstance(request.id, bool):
            raise EncodeError(f"Request id must be an integer, got {request.id!r}")

        message = {}
        if request.method:
            message["method"] = request.method
        if request.params is not None:
            if not isinstance(request.params, Mapping):
                raise EncodeError(
                    f"Unsupported params type {type(request.params).__name__}, expected an object"
                )
            message["params"] = dict(request.params)
        message["id"] = request.id

        try:
            return json.dumps(message, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError, RecursionError) as e:
            raise EncodeError(f"Cannot encode request id={request.id}: {e}") from e

    def decode(self, frame: Frame) -> Message:
        """
        Decode one incoming frame.

        A ``CloseSignal`` always decodes to a ``CloseNotification``. A data
        frame with an integer ``id`` is a ``Response``; any other JSON object
        is a ``RawFrame``.

        Raises:
            DecodeError: If a data frame is not a JSON object
        """
        if isinstance(frame, CloseSignal):
            return self.decode_close(frame.reason)

        if isinstance(frame, bytes):
            try:
                frame = frame.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(f"Frame is not valid UTF-8: {e}") from e

        try:
            payload = json.loads(frame)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Frame is not valid JSON: {e}") from e
        except RecursionError as e:
            raise DecodeError(f"Frame is nested too deeply: {e}") from e

        if not isinstance(payload, dict):
            raise DecodeError(f"Frame must be a JSON object, got {type(payload).__name__}")

        request_id = payload.get("id")
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return Response(
                id=request_id,
                result=payload.get("result"),
                error=payload.get("error"),
            )

        return RawFrame(payload=payload)

    def decode_close(self, text: Optional[str]) -> CloseNotification:
        """
        Decode the text of a close frame.

        Empty text means the transport closed without a structured payload.
        Text that is not a ``{reason, reconnect}`` object is kept as the reason
        and never authorizes a reconnect.
        """
        if not text:
            return CloseNotification.transport_closed()

        try:
            payload = json.loads(text)
        except ValueError:
            logger.debug(f"Close text is not JSON: {text!r}")
            return CloseNotification(reason=text, reconnect=False)

        if not isinstance(payload, dict):
            return CloseNotification(reason=text, reconnect=False)

        reason = payload.get("reason")
        reconnect = payload.get("reconnect")
        return CloseNotification(
            reason=str(reason) if reason is not None else text,
            reconnect=reconnect is True,
        )
