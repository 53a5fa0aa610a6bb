import asyncio
import shutil
import tempfile
import unittest

from pathlib import Path
from unittest.mock import MagicMock

import requests

from assetsmith.errors import ResourceFetchError
from assetsmith.resource_fetcher import FetchAbortedError, ResourceFetcher
from tests.unit.http_utils import SlowHttpServer


class TestResourceFetcher(unittest.TestCase):
    """Test fetching of bundle resources."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.file_path = self.temp_dir / "model file.obj"
        self.file_path.write_bytes(b"v 0 0 0\n")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_fetch_local_path(self):
        fetcher = ResourceFetcher()
        data = asyncio.run(fetcher.fetch(str(self.file_path)))
        self.assertEqual(data, b"v 0 0 0\n")

    def test_fetch_file_url(self):
        fetcher = ResourceFetcher()
        data = asyncio.run(fetcher.fetch(self.file_path.as_uri()))
        self.assertEqual(data, b"v 0 0 0\n")

    def test_fetch_http_uses_session(self):
        session = MagicMock()
        response = session.get.return_value
        response.iter_content.return_value = [b"rem", b"ote"]
        fetcher = ResourceFetcher(verify_ssl=False, session=session, chunk_size=3)

        data = asyncio.run(fetcher.fetch("https://cdn.example.com/a.png"))

        self.assertEqual(data, b"remote")
        session.get.assert_called_once_with(
            "https://cdn.example.com/a.png", verify=False, stream=True
        )
        response.raise_for_status.assert_called_once()
        response.iter_content.assert_called_once_with(chunk_size=3)
        response.close.assert_called_once()

    def test_close_stops_download_in_progress(self):
        session = MagicMock()
        fetcher = ResourceFetcher(session=session)

        def chunks(chunk_size):
            yield b"first"
            fetcher.close()
            yield b"second"
            yield b"third"

        session.get.return_value.iter_content.side_effect = chunks

        with self.assertRaises(ResourceFetchError) as context:
            asyncio.run(fetcher.fetch("https://cdn.example.com/big.bin"))

        self.assertIsInstance(context.exception.cause, FetchAbortedError)
        session.get.return_value.close.assert_called_once()

    def test_cancelled_fetch_stops_reading_the_body(self):
        """A cancelled download drops the connection instead of reading to the end."""
        with SlowHttpServer(b"x" * 20, delay_s=0.1) as server:
            fetcher = ResourceFetcher(chunk_size=1)

            async def fetch_and_cancel():
                task = asyncio.create_task(fetcher.fetch_many([(server.url, "slow.bin")]))
                await asyncio.sleep(0.3)
                task.cancel()
                with self.assertRaises(asyncio.CancelledError):
                    await task
                fetcher.close()

            asyncio.run(fetch_and_cancel())

            self.assertTrue(server.handler_done.wait(timeout=5))
            self.assertFalse(server.completed)
            self.assertLess(server.bytes_sent, 20)

    def test_http_error_is_wrapped(self):
        session = MagicMock()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError(
            "404 Client Error"
        )
        fetcher = ResourceFetcher(session=session)

        with self.assertRaises(ResourceFetchError) as context:
            asyncio.run(fetcher.fetch("https://cdn.example.com/a.png", "texture a.png"))

        self.assertEqual(context.exception.resource, "texture a.png")
        self.assertIsInstance(context.exception.cause, requests.HTTPError)

    def test_missing_file_raises(self):
        fetcher = ResourceFetcher()
        with self.assertRaises(ResourceFetchError) as context:
            asyncio.run(fetcher.fetch(str(self.temp_dir / "missing.png")))
        self.assertIsInstance(context.exception.cause, FileNotFoundError)

    def test_unsupported_scheme_raises(self):
        fetcher = ResourceFetcher()
        with self.assertRaises(ResourceFetchError):
            asyncio.run(fetcher.fetch("ftp://example.com/a.png"))

    def test_fetch_many_returns_request_order(self):
        other = self.temp_dir / "b.png"
        other.write_bytes(b"b")
        fetcher = ResourceFetcher(max_concurrency=1)

        data = asyncio.run(
            fetcher.fetch_many([(str(other), "b.png"), (str(self.file_path), "model")])
        )
        self.assertEqual(data, [b"b", b"v 0 0 0\n"])
        self.assertEqual(asyncio.run(fetcher.fetch_many([])), [])

    def test_fetch_many_failure_cancels_siblings(self):
        """One failing fetch cancels the fetches still in flight."""
        fetcher = ResourceFetcher(max_concurrency=4)
        cancelled = []

        async def fake_fetch(url, resource=None):
            if url == "bad":
                await asyncio.sleep(0.01)
                raise ResourceFetchError(resource, OSError("boom"))
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(url)
                raise
            return b""

        fetcher.fetch = fake_fetch

        with self.assertRaises(ResourceFetchError):
            asyncio.run(
                fetcher.fetch_many([("slow1", "a"), ("bad", "b"), ("slow2", "c")])
            )
        self.assertCountEqual(cancelled, ["slow1", "slow2"])

    def test_fetch_many_bounds_concurrency(self):
        fetcher = ResourceFetcher(max_concurrency=2)
        active = 0
        peak = 0

        async def fake_fetch(url, resource=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return url.encode()

        fetcher.fetch = fake_fetch

        data = asyncio.run(fetcher.fetch_many([(str(i), str(i)) for i in range(6)]))
        self.assertEqual(data, [str(i).encode() for i in range(6)])
        self.assertEqual(peak, 2)

    def test_closed_fetcher_raises(self):
        session = MagicMock()
        with ResourceFetcher(session=session) as fetcher:
            pass
        session.close.assert_called_once()
        with self.assertRaises(ResourceFetchError):
            asyncio.run(fetcher.fetch(str(self.file_path)))

    def test_invalid_concurrency(self):
        with self.assertRaises(ValueError):
            ResourceFetcher(max_concurrency=0)
        with self.assertRaises(ValueError):
            ResourceFetcher(chunk_size=0)


if __name__ == "__main__":
    unittest.main()
