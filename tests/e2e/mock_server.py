import asyncio

from aiohttp import web


def _record(request: web.Request, body: str):
    hits = request.app['hits']
    hits[request.path] = hits.get(request.path, 0) + 1
    request.app['requests'].append({
        'path': request.path,
        'method': request.method,
        'headers': dict(request.headers),
        'body': body,
    })


async def handle_ping(request: web.Request) -> web.Response:
    _record(request, await request.text())
    return web.json_response({'path': request.path, 'status': 'ok'})


async def handle_echo(request: web.Request) -> web.Response:
    body = await request.text()
    _record(request, body)
    return web.json_response({
        'path': request.path,
        'method': request.method,
        'query': dict(request.query),
        'headers': dict(request.headers),
        'body': body,
    })


async def handle_token(request: web.Request) -> web.Response:
    _record(request, await request.text())
    return web.json_response({'token': 'tok-123', 'authUrl': 'https://login.example.test/authorize'})


async def handle_status(request: web.Request) -> web.Response:
    _record(request, '')
    code = int(request.match_info['code'])
    return web.json_response({'code': code}, status=code)


async def handle_text(request: web.Request) -> web.Response:
    _record(request, '')
    return web.Response(text='plain text body')


async def handle_slow(request: web.Request) -> web.Response:
    _record(request, '')
    await asyncio.sleep(2)
    return web.json_response({'slow': True})


async def create_mock_server():
    app = web.Application()
    app['hits'] = {}
    app['requests'] = []
    app.router.add_get('/ping', handle_ping)
    app.router.add_post('/token', handle_token)
    app.router.add_route('*', '/echo', handle_echo)
    app.router.add_route('*', '/echo/{tail:.*}', handle_echo)
    app.router.add_get('/status/{code}', handle_status)
    app.router.add_get('/text', handle_text)
    app.router.add_get('/slow', handle_slow)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    base_url = f'http://127.0.0.1:{port}'
    return runner, base_url, app['hits'], app['requests']


async def shutdown_mock_server(runner):
    await runner.cleanup()
