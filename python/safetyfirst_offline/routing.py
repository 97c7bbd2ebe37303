"""
WebSocket routing for the offline sync consumer.

Include in your ASGI application::

    from safetyfirst_offline.routing import websocket_urlpatterns

    application = ProtocolTypeRouter({
        "websocket": AuthMiddlewareStack(URLRouter(websocket_urlpatterns)),
    })
"""

from django.urls import path

from .consumers import OfflineSyncConsumer

websocket_urlpatterns = [
    path("ws/offline/", OfflineSyncConsumer.as_asgi()),
]
