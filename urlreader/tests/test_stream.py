"""Tests for BodyStream."""

import io
import time
from unittest.mock import MagicMock

import pytest
import requests

from urlreader.context import Context
from urlreader.exceptions import ContextCanceled, DeadlineExceeded, TransportError
from urlreader.reader import URLReader
from urlreader.stream import BodyStream


def _mock_response(chunks, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.url = "http://example.test/data"
    response.iter_content.return_value = iter(chunks)
    return response


class TestBodyStream:
    def test_partial_reads(self):
        stream = BodyStream(_mock_response([b"hel", b"lo wor", b"ld"]), "http://example.test/data")

        assert stream.read(2) == b"he"
        assert stream.read(4) == b"l"
        assert stream.read(4) == b"lo w"
        assert stream.read() == b"orld"
        assert stream.read(4) == b""

    def test_line_iteration(self):
        stream = BodyStream(_mock_response([b"a\nb", b"\nc"]), "http://example.test/data")
        assert list(stream) == [b"a\n", b"b\n", b"c"]

    def test_iter_chunks_after_partial_read(self):
        stream = BodyStream(_mock_response([b"abcdef", b"ghi"]), "http://example.test/data")

        assert stream.read(2) == b"ab"
        assert list(stream.iter_chunks()) == [b"cdef", b"ghi"]
        assert stream.read() == b""

    def test_buffered_reader_wrapping(self):
        stream = BodyStream(_mock_response([b"one\ntwo\n"]), "http://example.test/data")
        with io.BufferedReader(stream) as buffered:
            assert buffered.readline() == b"one\n"
            assert buffered.read() == b"two\n"

    def test_close_releases_response_once(self):
        response = _mock_response([b"data"])
        stream = BodyStream(response, "http://example.test/data")

        stream.close()
        stream.close()

        assert stream.closed
        response.close.assert_called_once()

    def test_context_manager_closes(self):
        response = _mock_response([b"data"])
        with BodyStream(response, "http://example.test/data") as stream:
            assert stream.read() == b"data"
        response.close.assert_called_once()

    def test_read_after_close_raises(self):
        stream = BodyStream(_mock_response([b"data"]), "http://example.test/data")
        stream.close()

        with pytest.raises(ValueError):
            stream.read(1)
        with pytest.raises(ValueError):
            next(stream.iter_chunks())

    def test_read_error_raises_transport_error(self):
        def broken(chunk_size):
            yield b"abc"
            raise requests.exceptions.ChunkedEncodingError("connection reset")

        response = MagicMock()
        response.iter_content.side_effect = broken
        stream = BodyStream(response, "http://example.test/data")

        assert stream.read(3) == b"abc"
        with pytest.raises(TransportError) as exc_info:
            stream.read()
        assert exc_info.value.location == "http://example.test/data"
        assert isinstance(exc_info.value.cause, requests.exceptions.ChunkedEncodingError)

    def test_response_metadata(self):
        response = _mock_response([], status_code=206)
        response.headers = {"Content-Type": "text/plain"}
        stream = BodyStream(response, "http://example.test/data")

        assert stream.status_code == 206
        assert stream.headers["Content-Type"] == "text/plain"
        assert stream.url == "http://example.test/data"
        assert stream.location == "http://example.test/data"
        assert "open" in repr(stream)

    def test_abandoned_stream_closes_connection(self, local_server, session):
        local_server.route("/large", body=b"z" * 500000)
        local_server.route("/data", body=b"hello")

        body = URLReader(local_server.url("/large"), session=session).open(Context.with_timeout(5))
        assert body.read(10) == b"z" * 10
        body.close()
        URLReader(local_server.url("/data"), session=session).read_bytes(Context.with_timeout(5))

        assert local_server.connections == 2

    def test_consumed_stream_returns_connection(self, local_server, session):
        local_server.route("/data", body=b"hello")

        for _ in range(3):
            with URLReader(local_server.url("/data"), session=session).open(
                Context.with_timeout(5)
            ) as body:
                assert body.read() == b"hello"

        assert local_server.connections == 1


class TestBodyStreamContext:
    def test_read_after_cancel_raises(self):
        ctx = Context.background()
        response = _mock_response([b"abc", b"def"])
        stream = BodyStream(response, "http://example.test/data", ctx=ctx)

        assert stream.read(3) == b"abc"
        ctx.cancel()

        with pytest.raises(TransportError) as exc_info:
            stream.read()
        assert exc_info.value.cancelled is True
        assert isinstance(exc_info.value.cause, ContextCanceled)
        assert not stream.closed
        stream.close()
        response.close.assert_called_once()

    def test_read_after_deadline_raises(self):
        ctx = Context.with_timeout(0.01)
        time.sleep(0.05)
        stream = BodyStream(_mock_response([b"abc"]), "http://example.test/data", ctx=ctx)

        with pytest.raises(TransportError) as exc_info:
            next(stream.iter_chunks())
        assert isinstance(exc_info.value.cause, DeadlineExceeded)

    def test_cancel_aborts_watched_connection(self):
        ctx = Context.background()
        watch = MagicMock()
        BodyStream(_mock_response([b"abc"]), "http://example.test/data", ctx=ctx, watch=watch)

        ctx.cancel()

        watch.abort.assert_called_once_with()

    def test_finished_stream_stops_watching(self):
        ctx = Context.background()
        watch = MagicMock()
        stream = BodyStream(
            _mock_response([b"abc"]), "http://example.test/data", ctx=ctx, watch=watch
        )

        assert stream.read() == b"abc"
        ctx.cancel()

        watch.detach.assert_called_once_with()
        watch.abort.assert_not_called()

    def test_close_stops_watching(self):
        ctx = Context.background()
        watch = MagicMock()
        stream = BodyStream(
            _mock_response([b"abc"]), "http://example.test/data", ctx=ctx, watch=watch
        )

        stream.close()
        ctx.cancel()

        watch.abort.assert_not_called()
