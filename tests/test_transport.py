"""Tests for meter.transport against a local aiohttp server."""

import unittest

from aiohttp import test_utils, web

from meter.errors import TransferError
from meter.transport import AiohttpTransport

BODY_SIZE = 200_000


class TestAiohttpTransport(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.uploads = []
        app = web.Application()
        app.router.add_get("/ping", self._ping)
        app.router.add_get("/bytes", self._bytes)
        app.router.add_post("/upload", self._upload)
        app.router.add_post("/broken", self._broken)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()
        self.transport = AiohttpTransport()
        await self.transport.__aenter__()

    async def asyncTearDown(self):
        await self.transport.__aexit__(None, None, None)
        await self.server.close()

    def url(self, path):
        return str(self.server.make_url(path))

    # -- handlers -------------------------------------------------------------

    async def _ping(self, request):
        return web.Response(status=204)

    async def _bytes(self, request):
        return web.Response(body=b"x" * BODY_SIZE)

    async def _upload(self, request):
        body = await request.read()
        self.uploads.append((request.headers.get("Content-Type"), len(body)))
        return web.json_response({"received": len(body)})

    async def _broken(self, request):
        return web.Response(status=500)

    # -- tests ----------------------------------------------------------------

    async def test_head_returns_status(self):
        self.assertEqual(await self.transport.head(self.url("/ping")), 204)

    async def test_head_any_status_is_returned(self):
        self.assertEqual(await self.transport.head(self.url("/missing")), 404)

    async def test_head_unreachable(self):
        with self.assertRaises(TransferError):
            await self.transport.head("http://127.0.0.1:1/")

    async def test_fetch_streams_body(self):
        sizes = [len(c) async for c in self.transport.fetch(self.url("/bytes"), 16 * 1024)]
        self.assertEqual(sum(sizes), BODY_SIZE)
        self.assertTrue(all(s <= 16 * 1024 for s in sizes))

    async def test_fetch_http_error(self):
        with self.assertRaises(TransferError) as ctx:
            async for _ in self.transport.fetch(self.url("/missing"), 1024):
                pass
        self.assertEqual(ctx.exception.status, 404)

    async def test_post(self):
        status = await self.transport.post(self.url("/upload"), b"\0" * 4096)
        self.assertEqual(status, 200)
        self.assertEqual(self.uploads, [("application/octet-stream", 4096)])

    async def test_post_http_error(self):
        with self.assertRaises(TransferError) as ctx:
            await self.transport.post(self.url("/broken"), b"data")
        self.assertEqual(ctx.exception.status, 500)

    async def test_requires_context_manager(self):
        with self.assertRaises(RuntimeError):
            await AiohttpTransport().head(self.url("/ping"))


if __name__ == "__main__":
    unittest.main()
