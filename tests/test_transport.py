import grpc
import numpy as np
import pytest
from google.protobuf import any_pb2
from google.rpc import error_details_pb2, status_pb2

from conv_client import transport
from conv_client.errors import TransportError
from conv_client.matrices import generate_matrix, manual_matrix
from conv_client.request import ConvolutionRequest
from conv_client.transport import (
    CONVOLUTIONAL_LAYER_METHOD,
    FrontClient,
    FrontReply,
    FrontRequest,
    MatrixMessage,
    matrix_to_proto,
    proto_to_matrix,
    request_to_proto,
    transport_error_from_rpc,
)


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details, trailing_metadata=()):
        super().__init__(details)
        self._code = code
        self._details = details
        self._trailing_metadata = trailing_metadata

    def code(self):
        return self._code

    def details(self):
        return self._details

    def trailing_metadata(self):
        return self._trailing_metadata


class FakeChannel:
    def __init__(self, handler):
        self.handler = handler
        self.method = None
        self.closed = False

    def unary_unary(self, method, request_serializer, response_deserializer):
        self.method = method

        def call(message, timeout):
            payload = request_serializer(message)
            return response_deserializer(self.handler(FrontRequest.FromString(payload), timeout))

        return call

    def close(self):
        self.closed = True


def _request():
    return ConvolutionRequest(
        target=manual_matrix("target", 2, [1, 2, 3, 4]),
        kernels=(generate_matrix(3, 3), generate_matrix(3, 3, fill_value=0.5)),
        avg_pool_size=2,
        use_kernels=True,
        use_sigmoid=True,
        expected_size=88,
        expected_results=2,
    )


def test_request_message_carries_every_field():
    message = request_to_proto(_request())

    assert message.AvgPoolSize == 2
    assert message.UseKernels is True
    assert message.UseSigmoid is True
    assert [list(row.Values) for row in message.Target.Rows] == [[1.0, 2.0], [3.0, 4.0]]
    assert len(message.Kernel) == 2
    assert list(message.Kernel[1].Rows[2].Values) == [0.5, 0.5, 0.5]


def test_matrix_survives_the_wire():
    matrix = generate_matrix(5, 5, random=True, rng=np.random.default_rng(3))

    encoded = matrix_to_proto(matrix).SerializeToString()
    decoded = proto_to_matrix(MatrixMessage.FromString(encoded))

    assert np.array_equal(decoded, matrix)
    assert not decoded.flags.writeable


def test_empty_matrix_decodes_to_zero_by_zero():
    assert proto_to_matrix(matrix_to_proto(generate_matrix(0, 0))).shape == (0, 0)


def test_ragged_matrix_is_rejected():
    message = matrix_to_proto(generate_matrix(2, 2))
    message.Rows[1].Values.append(9.0)

    with pytest.raises(TransportError, match="different lengths"):
        proto_to_matrix(message)


def test_client_sends_request_and_decodes_reply():
    seen = {}

    def handler(message, timeout):
        seen["timeout"] = timeout
        seen["kernels"] = len(message.Kernel)
        reply = FrontReply(ID=17)
        reply.Result.add().CopyFrom(matrix_to_proto(generate_matrix(1, 1, fill_value=4.0)))
        return reply.SerializeToString()

    channel = FakeChannel(handler)
    client = FrontClient(channel)

    response = client.convolutional_layer(_request(), timeout=60.0)

    assert channel.method == CONVOLUTIONAL_LAYER_METHOD == "/proto.Front/ConvolutionalLayer"
    assert seen == {"timeout": 60.0, "kernels": 2}
    assert response.id == 17
    assert [result.tolist() for result in response.results] == [[[4.0]]]


def test_client_translates_rpc_errors():
    def handler(message, timeout):
        raise FakeRpcError(grpc.StatusCode.DEADLINE_EXCEEDED, "Deadline Exceeded")

    client = FrontClient(FakeChannel(handler))

    with pytest.raises(TransportError) as excinfo:
        client.convolutional_layer(_request(), timeout=0.01)

    assert excinfo.value.message == "Deadline Exceeded"
    assert excinfo.value.code == "DEADLINE_EXCEEDED"
    assert excinfo.value.details == []


def _status_error(*details):
    status = status_pb2.Status(
        code=grpc.StatusCode.INTERNAL.value[0],
        message="worker crashed",
        details=list(details),
    )
    return FakeRpcError(
        grpc.StatusCode.INTERNAL,
        "worker crashed",
        (("grpc-status-details-bin", status.SerializeToString()),),
    )


def test_rich_status_details_keep_their_payload():
    detail = any_pb2.Any()
    detail.Pack(error_details_pb2.DebugInfo(detail="stack here", stack_entries=["worker.go:42"]))

    translated = transport_error_from_rpc(_status_error(detail))

    assert translated.message == "worker crashed"
    assert translated.code == "INTERNAL"
    assert len(translated.details) == 1
    assert translated.details[0].startswith("DebugInfo: ")
    assert '"stack here"' in translated.details[0]
    assert '"worker.go:42"' in translated.details[0]


def test_unknown_status_details_fall_back_to_raw_value():
    raw = b"\x08\x01"
    detail = any_pb2.Any(type_url="type.googleapis.com/acme.Custom", value=raw)

    translated = transport_error_from_rpc(_status_error(detail))

    assert translated.details == ["type.googleapis.com/acme.Custom: " + repr(raw)]


def test_round_trip_excludes_encoding_and_decoding(monkeypatch):
    events = []
    ticks = iter(range(100))

    def clock():
        events.append("clock")
        return float(next(ticks))

    def traced(name, func):
        def wrapper(*args, **kwargs):
            events.append(name)
            return func(*args, **kwargs)

        return wrapper

    monkeypatch.setattr(
        transport, "request_to_proto", traced("encode", transport.request_to_proto)
    )
    monkeypatch.setattr(
        transport, "reply_to_response", traced("decode", transport.reply_to_response)
    )

    def handler(message, timeout):
        events.append("call")
        return FrontReply(ID=1).SerializeToString()

    client = FrontClient(FakeChannel(handler), clock=clock)

    response = client.convolutional_layer(_request(), timeout=60.0)

    assert events == ["encode", "clock", "call", "clock", "decode"]
    assert (response.sent_at, response.received_at) == (0.0, 1.0)


def test_close_closes_the_channel():
    channel = FakeChannel(lambda message, timeout: b"")

    with FrontClient(channel):
        pass

    assert channel.closed
