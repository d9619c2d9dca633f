from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class CORSExceptPaths:
    """
    CORSMiddleware para toda la app salvo los prefijos dados, que manejan
    CORS ellos mismos (el webhook responde su propio OPTIONS).
    """

    def __init__(self, app: ASGIApp, exclude_prefixes=(), **cors_options):
        self.app = app
        self.exclude_prefixes = tuple(exclude_prefixes)
        self.cors = CORSMiddleware(app, **cors_options)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(self.exclude_prefixes):
            await self.app(scope, receive, send)
            return
        await self.cors(scope, receive, send)
