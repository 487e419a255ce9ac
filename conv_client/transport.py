"""
gRPC client for the front service of the convolution cluster.

The wire messages are protobuf types assembled at import time from a file
descriptor, so no generated ``_pb2`` modules are needed. Field numbers follow
the front service's ``ConvolutionalLayer`` contract.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import grpc
import numpy as np
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory, text_format
from google.rpc import error_details_pb2
from grpc_status import rpc_status

from .errors import ConnectionFailed, TransportError
from .matrices import MATRIX_DTYPE
from .request import MSG_MAX_SIZE, ConvolutionRequest, ConvolutionResponse

LOGGER = logging.getLogger("conv_client.transport")

PROTO_PACKAGE = "proto"
CONVOLUTIONAL_LAYER_METHOD = f"/{PROTO_PACKAGE}.Front/ConvolutionalLayer"
CONNECT_TIMEOUT_S = 10.0

_Field = descriptor_pb2.FieldDescriptorProto


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="conv_client/front.proto",
        package=PROTO_PACKAGE,
        syntax="proto3",
    )

    def add_field(message, name, number, field_type, repeated=False, type_name=None):
        field = message.field.add(
            name=name,
            number=number,
            type=field_type,
            label=_Field.LABEL_REPEATED if repeated else _Field.LABEL_OPTIONAL,
        )
        if type_name:
            field.type_name = f".{PROTO_PACKAGE}.{type_name}"

    row = file_proto.message_type.add(name="Row")
    add_field(row, "Values", 1, _Field.TYPE_FLOAT, repeated=True)

    matrix = file_proto.message_type.add(name="Matrix")
    add_field(matrix, "Rows", 1, _Field.TYPE_MESSAGE, repeated=True, type_name="Row")

    request = file_proto.message_type.add(name="ConvolutionalLayerFrontRequest")
    add_field(request, "Target", 1, _Field.TYPE_MESSAGE, type_name="Matrix")
    add_field(request, "Kernel", 2, _Field.TYPE_MESSAGE, repeated=True, type_name="Matrix")
    add_field(request, "AvgPoolSize", 3, _Field.TYPE_INT32)
    add_field(request, "UseKernels", 4, _Field.TYPE_BOOL)
    add_field(request, "UseSigmoid", 5, _Field.TYPE_BOOL)

    reply = file_proto.message_type.add(name="ConvolutionalLayerFrontReply")
    add_field(reply, "ID", 1, _Field.TYPE_INT32)
    add_field(reply, "Result", 2, _Field.TYPE_MESSAGE, repeated=True, type_name="Matrix")

    service = file_proto.service.add(name="Front")
    service.method.add(
        name="ConvolutionalLayer",
        input_type=f".{PROTO_PACKAGE}.ConvolutionalLayerFrontRequest",
        output_type=f".{PROTO_PACKAGE}.ConvolutionalLayerFrontReply",
    )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PROTO_PACKAGE}.{name}"))


MatrixMessage = _message_class("Matrix")
FrontRequest = _message_class("ConvolutionalLayerFrontRequest")
FrontReply = _message_class("ConvolutionalLayerFrontReply")


def matrix_to_proto(matrix: np.ndarray):
    message = MatrixMessage()
    for row in matrix.tolist():
        message.Rows.add().Values.extend(row)
    return message


def proto_to_matrix(message) -> np.ndarray:
    rows = [list(row.Values) for row in message.Rows]
    if not rows:
        matrix = np.zeros((0, 0), dtype=MATRIX_DTYPE)
    else:
        width = len(rows[0])
        if any(len(row) != width for row in rows):
            raise TransportError("received a matrix with rows of different lengths")
        matrix = np.asarray(rows, dtype=MATRIX_DTYPE).reshape(len(rows), width)
    matrix.flags.writeable = False
    return matrix


def request_to_proto(request: ConvolutionRequest):
    message = FrontRequest(
        AvgPoolSize=request.avg_pool_size,
        UseKernels=request.use_kernels,
        UseSigmoid=request.use_sigmoid,
    )
    message.Target.CopyFrom(matrix_to_proto(request.target))
    for kernel in request.kernels:
        message.Kernel.add().CopyFrom(matrix_to_proto(kernel))
    return message


def reply_to_response(
    reply,
    sent_at: float | None = None,
    received_at: float | None = None,
) -> ConvolutionResponse:
    return ConvolutionResponse(
        id=reply.ID,
        results=tuple(proto_to_matrix(result) for result in reply.Result),
        sent_at=sent_at,
        received_at=received_at,
    )


_ERROR_DETAIL_TYPES = {
    descriptor.full_name: getattr(error_details_pb2, name)
    for name, descriptor in error_details_pb2.DESCRIPTOR.message_types_by_name.items()
}


def format_status_detail(detail) -> str:
    """Render one ``google.protobuf.Any`` status detail with its payload."""
    message_class = _ERROR_DETAIL_TYPES.get(detail.TypeName())
    if message_class is not None:
        message = message_class()
        if detail.Unpack(message):
            body = text_format.MessageToString(message, as_one_line=True)
            return f"{message_class.DESCRIPTOR.name}: {body}"
    return f"{detail.type_url}: {detail.value!r}"


def transport_error_from_rpc(exc: grpc.RpcError) -> TransportError:
    """Translate a failed call into a ``TransportError`` keeping the server message."""
    code = exc.code() if hasattr(exc, "code") else None
    message = exc.details() if hasattr(exc, "details") else None
    details: list[str] = []
    try:
        status = rpc_status.from_call(exc) if hasattr(exc, "trailing_metadata") else None
    except ValueError:
        status = None
    if status is not None:
        message = status.message or message
        details = [format_status_detail(detail) for detail in status.details]
    return TransportError(
        message or str(exc),
        details=details,
        code=code.name if code is not None else None,
    )


class FrontClient:
    """Thread-safe client for the ``Front.ConvolutionalLayer`` RPC."""

    def __init__(
        self,
        channel: grpc.Channel,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._channel = channel
        self._clock = clock
        self._convolutional_layer = channel.unary_unary(
            CONVOLUTIONAL_LAYER_METHOD,
            request_serializer=FrontRequest.SerializeToString,
            response_deserializer=FrontReply.FromString,
        )

    @classmethod
    def connect(
        cls,
        address: str,
        port: str,
        connect_timeout_s: float = CONNECT_TIMEOUT_S,
    ) -> "FrontClient":
        target = f"{address}:{port}"
        channel = grpc.insecure_channel(
            target,
            options=[
                ("grpc.max_send_message_length", MSG_MAX_SIZE),
                ("grpc.max_receive_message_length", MSG_MAX_SIZE),
            ],
        )
        try:
            grpc.channel_ready_future(channel).result(timeout=connect_timeout_s)
        except grpc.FutureTimeoutError as exc:
            channel.close()
            raise ConnectionFailed(
                f"could not connect to {target} within {connect_timeout_s:.1f} seconds"
            ) from exc
        LOGGER.info("Connected to front service at %s", target)
        return cls(channel)

    def convolutional_layer(
        self,
        request: ConvolutionRequest,
        timeout: float,
    ) -> ConvolutionResponse:
        """Send ``request`` and decode the reply.

        The returned ``sent_at``/``received_at`` bracket the RPC alone; proto
        encoding and matrix decoding happen outside that window.
        """
        message = request_to_proto(request)
        sent_at = self._clock()
        try:
            reply = self._convolutional_layer(message, timeout=timeout)
        except grpc.RpcError as exc:
            raise transport_error_from_rpc(exc) from exc
        received_at = self._clock()
        return reply_to_response(reply, sent_at, received_at)

    def close(self) -> None:
        self._channel.close()

    def __enter__(self) -> "FrontClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "CONVOLUTIONAL_LAYER_METHOD",
    "FrontRequest",
    "FrontReply",
    "FrontClient",
    "matrix_to_proto",
    "proto_to_matrix",
    "request_to_proto",
    "reply_to_response",
    "format_status_detail",
    "transport_error_from_rpc",
]
