"""Test cases for streaming RPCs."""

import grpc
import pytest

from grpc_stub import Response
from tests.route_guide import (
    message,
    metadata_values,
    note,
    point,
    route_guide_client,
)


def _rectangle(server):
    return message(
        server, "routeguide.Rectangle", lo=point(server, 1, 1), hi=point(server, 5, 5)
    )


def test_server_stream_every_match_fires():
    """Every matching matcher answers, in registration order."""
    with route_guide_client() as (server, client):
        first = server.method("ListFeatures").response({"name": "first"})
        second = server.service("routeguide.RouteGuide").response({"name": "second"})

        replies = list(client.ListFeatures(_rectangle(server)))

        assert [f.name for f in replies] == ["first", "second"]
        assert len(first.requests()) == 1
        assert len(second.requests()) == 1
        assert len(server.requests()) == 1


def test_server_stream_messages_in_order():
    """The messages of one matcher are streamed in the order they were given."""
    with route_guide_client() as (server, client):
        server.method("ListFeatures").response({"name": "a"}).response(
            {"name": "b"}
        ).response({"name": "c"})

        replies = client.ListFeatures(_rectangle(server))

        assert [f.name for f in replies] == ["a", "b", "c"]


def test_server_stream_sees_the_request():
    """Handlers can derive replies from the request."""
    with route_guide_client() as (server, client):
        server.method("ListFeatures").handler(
            lambda r: Response(
                messages=[
                    {"location": corner, "name": name}
                    for name, corner in sorted(r.message.items())
                ]
            )
        )

        replies = list(client.ListFeatures(_rectangle(server)))

        assert [(f.name, f.location.latitude) for f in replies] == [
            ("hi", 5),
            ("lo", 1),
        ]


def test_server_stream_no_match():
    """A request that matches nothing fails with NOT_FOUND."""
    with route_guide_client() as (server, client):
        server.method("GetFeature")

        with pytest.raises(grpc.RpcError) as e:
            list(client.ListFeatures(_rectangle(server)))

        assert e.value.code() == grpc.StatusCode.NOT_FOUND
        assert len(server.requests()) == 1


def test_server_stream_error_after_replies():
    """An error status ends the stream after earlier matchers' replies."""
    with route_guide_client() as (server, client):
        server.method("ListFeatures").response({"name": "ok"})
        server.method("ListFeatures").response({"name": "never"}).status(
            grpc.StatusCode.RESOURCE_EXHAUSTED, "slow down"
        )
        server.method("ListFeatures").response({"name": "unreached"})

        names = []
        with pytest.raises(grpc.RpcError) as e:
            for feature in client.ListFeatures(_rectangle(server)):
                names.append(feature.name)

        assert names == ["ok"]
        assert e.value.code() == grpc.StatusCode.RESOURCE_EXHAUSTED
        assert e.value.details() == "slow down"


def test_server_stream_headers_sent_once():
    """Only the first matcher's headers are sent; trailers accumulate."""
    with route_guide_client() as (server, client):
        server.method("ListFeatures").header("x-h", "1").trailer("x-t", "1")
        server.method("ListFeatures").header("x-h", "2").trailer("x-t", "2")

        call = client.ListFeatures(_rectangle(server))
        assert list(call) == []

        assert metadata_values(call.initial_metadata(), "x-h") == ["1"]
        assert metadata_values(call.trailing_metadata(), "x-t") == ["1", "2"]


def test_client_stream_first_matching_request():
    """Only the first request that matches a matcher is answered."""
    with route_guide_client() as (server, client):
        m = server.match(lambda r: r.message["latitude"] == 2).handler(
            lambda r: Response(messages=[{"point_count": r.message["longitude"]}])
        )

        summary = client.RecordRoute(
            iter([point(server, 1, 10), point(server, 2, 20), point(server, 3, 30)])
        )

        assert summary.point_count == 20
        assert [r.message["latitude"] for r in m.requests()] == [2]
        assert [r.message["latitude"] for r in server.requests()] == [1, 2, 3]


def test_client_stream_requests_before_matchers():
    """Requests are scanned in order, trying every matcher for each."""
    with route_guide_client() as (server, client):
        server.match(lambda r: r.message["latitude"] == 2).response(
            {"point_count": 2}
        )
        server.match(lambda r: r.message["latitude"] == 1).response(
            {"point_count": 1}
        )

        summary = client.RecordRoute(iter([point(server, 1), point(server, 2)]))

        assert summary.point_count == 1


def test_client_stream_error_status():
    """An error status on the answering matcher fails the call."""
    with route_guide_client() as (server, client):
        server.method("RecordRoute").status(grpc.StatusCode.FAILED_PRECONDITION, "no")

        with pytest.raises(grpc.RpcError) as e:
            client.RecordRoute(iter([point(server)]))

        assert e.value.code() == grpc.StatusCode.FAILED_PRECONDITION
        assert e.value.details() == "no"


def test_client_stream_no_match():
    """Requests that match nothing fail with NOT_FOUND once the stream ends."""
    with route_guide_client() as (server, client):
        server.match(lambda r: r.message["latitude"] == 9)

        with pytest.raises(grpc.RpcError) as e:
            client.RecordRoute(iter([point(server, 1), point(server, 2)]))

        assert e.value.code() == grpc.StatusCode.NOT_FOUND
        assert len(server.requests()) == 2


def test_client_stream_empty():
    """An empty request stream has nothing to match."""
    with route_guide_client() as (server, client):
        server.method("RecordRoute")

        with pytest.raises(grpc.RpcError) as e:
            client.RecordRoute(iter([]))

        assert e.value.code() == grpc.StatusCode.NOT_FOUND
        assert server.requests() == ()


def test_bidi_stream():
    """Every message is answered by every matcher that accepts it."""
    with route_guide_client() as (server, client):
        server.match(lambda r: r.message["message"] == "client[0]").header(
            "x-first", "yes"
        ).response({"message": "server[0]"})
        server.method("RouteChat").handler(
            lambda r: Response(
                messages=[{"message": r.message["message"].replace("client", "server")}]
            )
        ).header("x-chat", "1")

        call = client.RouteChat(iter([note(server, f"client[{i}]") for i in range(5)]))
        replies = [n.message for n in call]

        assert replies == ["server[0]", "server[0]"] + [
            f"server[{i}]" for i in range(1, 5)
        ]
        assert metadata_values(call.initial_metadata(), "x-first") == ["yes"]
        assert metadata_values(call.initial_metadata(), "x-chat") == []
        assert len(server.requests()) == 5


def test_bidi_stream_no_match():
    """A message that matches nothing ends the stream with NOT_FOUND."""
    with route_guide_client() as (server, client):
        server.match(lambda r: r.message["message"] != "unknown").response(
            {"message": "ack"}
        )

        replies = []
        with pytest.raises(grpc.RpcError) as e:
            notes = ["hello", "unknown", "never read"]
            for reply in client.RouteChat(iter([note(server, n) for n in notes])):
                replies.append(reply.message)

        assert replies == ["ack"]
        assert e.value.code() == grpc.StatusCode.NOT_FOUND


def test_bidi_stream_error_status():
    """An error status ends the stream."""
    with route_guide_client() as (server, client):
        server.method("RouteChat").trailer("x-t", "bye").status(
            grpc.StatusCode.ABORTED
        )

        with pytest.raises(grpc.RpcError) as e:
            list(client.RouteChat(iter([note(server, "hi")])))

        assert e.value.code() == grpc.StatusCode.ABORTED
        assert e.value.details() == "ABORTED"
        assert metadata_values(e.value.trailing_metadata(), "x-t") == ["bye"]


def test_bidi_stream_end_of_input():
    """The stream closes normally when the client stops sending."""
    with route_guide_client() as (server, client):
        server.method("RouteChat").response({"message": "ack"})

        call = client.RouteChat(iter([]))

        assert list(call) == []
        assert call.code() == grpc.StatusCode.OK
