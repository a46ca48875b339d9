from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send


def forwarded_client_ip(forwarded_for: str, proxies_count: int) -> str | None:
    """Pick the client address from ``X-Forwarded-For`` given N trusted proxies in front.

    Each proxy appends the address it received from, so the client sits N hops from the end.
    Anything shorter than that chain was not written by our proxies and is ignored.
    """
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    if proxies_count <= 0 or len(hops) < proxies_count:
        return None
    return hops[-proxies_count]


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` so rate limits key on the borrower, not the load balancer."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            forwarded = Headers(scope=scope).get("x-forwarded-for")
            client_ip = forwarded_client_ip(forwarded, self.proxies_count) if forwarded else None
            if client_ip:
                _, port = scope.get("client") or (None, 0)
                scope["client"] = (client_ip, port)
        await self.app(scope, receive, send)
